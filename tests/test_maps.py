import pytest

from conftest import bearer


@pytest.fixture
def map_id(client, dm_token):
    response = client.post('/api/campaigns/1/maps', json={'name': 'Crypt', 'image_url': '/static/crypt.png'},
                           headers=bearer(dm_token))
    assert response.status_code == 201
    return response.get_json()['map']['id']


def add_marker(client, token, map_id, **fields):
    body = {'type': 'enemy', 'x': 10, 'y': 20, 'label': 'Ghoul'}
    body.update(fields)
    return client.post('/api/maps/%d/markers' % map_id, json=body, headers=bearer(token))


def test_players_never_see_hidden_markers(client, dm_token, player_token, map_id):
    add_marker(client, dm_token, map_id, label='Visible ghoul')
    add_marker(client, dm_token, map_id, label='Lurking ghoul', visible=False)

    dm_view = client.get('/api/maps/%d' % map_id, headers=bearer(dm_token)).get_json()
    assert len(dm_view['markers']) == 2

    player_view = client.get('/api/maps/%d' % map_id, headers=bearer(player_token)).get_json()
    assert [marker['label'] for marker in player_view['markers']] == ['Visible ghoul']

    markers = client.get('/api/maps/%d/markers' % map_id, headers=bearer(player_token)).get_json()
    assert [marker['label'] for marker in markers] == ['Visible ghoul']


def test_only_dm_places_markers(client, player_token, map_id):
    assert add_marker(client, player_token, map_id).status_code == 403


def test_player_moves_visible_party_token(client, dm_token, player_token, map_id):
    token_id = add_marker(client, dm_token, map_id, type='player', label='Lyra').get_json()['marker']['id']
    enemy_id = add_marker(client, dm_token, map_id).get_json()['marker']['id']

    response = client.post('/api/markers/%d/position' % token_id, json={'x': 55, 'y': 66},
                           headers=bearer(player_token))
    assert response.status_code == 200
    assert (response.get_json()['marker']['x'], response.get_json()['marker']['y']) == (55, 66)

    response = client.post('/api/markers/%d/position' % enemy_id, json={'x': 1, 'y': 1},
                           headers=bearer(player_token))
    assert response.status_code == 403


def test_batch_visibility(client, dm_token, player_token, map_id):
    ids = [add_marker(client, dm_token, map_id, visible=False).get_json()['marker']['id'] for _ in range(3)]

    response = client.post('/api/maps/%d/markers/visibility' % map_id, json={'visible': True, 'marker_ids': ids[:2]},
                           headers=bearer(dm_token))
    assert response.get_json()['updated'] == 2

    markers = client.get('/api/maps/%d/markers' % map_id, headers=bearer(player_token)).get_json()
    assert sorted(marker['id'] for marker in markers) == ids[:2]

    response = client.post('/api/markers/%d/visibility' % ids[0], json={'visible': False}, headers=bearer(dm_token))
    assert response.get_json()['marker']['visible'] is False


def test_fog_of_war(client, dm_token, player_token, map_id):
    points = [{'x': 0, 'y': 0}, {'x': 100, 'y': 0}, {'x': 100, 'y': 100}]
    response = client.post('/api/maps/%d/fog' % map_id, json={'points': points}, headers=bearer(dm_token))
    assert response.status_code == 201
    fog_id = response.get_json()['fog']['id']

    response = client.patch('/api/fog/%d' % fog_id, json={'revealed': True}, headers=bearer(dm_token))
    assert response.get_json()['fog']['revealed'] is True

    assert client.post('/api/maps/%d/fog' % map_id, json={'points': []},
                       headers=bearer(dm_token)).status_code == 400
    assert client.delete('/api/fog/%d' % fog_id, headers=bearer(player_token)).status_code == 403


def test_delete_map_removes_markers(client, dm_token, map_id):
    marker_id = add_marker(client, dm_token, map_id).get_json()['marker']['id']
    assert client.delete('/api/maps/%d' % map_id, headers=bearer(dm_token)).status_code == 200
    assert client.get('/api/maps/%d' % map_id, headers=bearer(dm_token)).status_code == 404
    assert client.delete('/api/markers/%d' % marker_id, headers=bearer(dm_token)).status_code == 404


def test_outsider_cannot_see_maps(client, outsider_token, map_id):
    assert client.get('/api/campaigns/1/maps', headers=bearer(outsider_token)).status_code == 403
    assert client.get('/api/maps/%d' % map_id, headers=bearer(outsider_token)).status_code == 403
