from tabletop.db import get_db_connection

from conftest import bearer, login


def test_players_see_only_their_campaigns(client, dm_token, player_token, outsider_token):
    client.post('/api/campaigns', json={'name': 'Second Campaign'}, headers=bearer(dm_token))

    names = [campaign['name'] for campaign in client.get('/api/campaigns', headers=bearer(player_token)).get_json()]
    assert names == ['Demo Campaign']

    assert client.get('/api/campaigns', headers=bearer(outsider_token)).get_json() == []

    names = [campaign['name'] for campaign in client.get('/api/campaigns', headers=bearer(dm_token)).get_json()]
    assert names == ['Demo Campaign', 'Second Campaign']


def test_campaign_membership(client, dm_token, player_token, outsider_token):
    assert client.get('/api/campaigns/1', headers=bearer(player_token)).status_code == 200
    assert client.get('/api/campaigns/1', headers=bearer(outsider_token)).status_code == 403
    assert client.get('/api/campaigns/99', headers=bearer(dm_token)).status_code == 404


def test_roster_management(client, dm_token, outsider_token):
    outsider_id = client.get('/api/auth/session', headers=bearer(outsider_token)).get_json()['account']['id']

    response = client.post('/api/campaigns/1/players', json={'player_id': outsider_id}, headers=bearer(dm_token))
    assert outsider_id in response.get_json()['campaign']['players']
    assert client.get('/api/campaigns/1', headers=bearer(outsider_token)).status_code == 200

    response = client.delete('/api/campaigns/1/players/%d' % outsider_id, headers=bearer(dm_token))
    assert outsider_id not in response.get_json()['campaign']['players']
    assert client.get('/api/campaigns/1', headers=bearer(outsider_token)).status_code == 403


def test_only_campaign_dm_manages(client, player_token):
    response = client.patch('/api/campaigns/1', json={'name': 'Hijacked'}, headers=bearer(player_token))
    assert response.status_code == 403

    other_dm = client.post('/api/users', json={'username': 'otherdm', 'password': 'secret1', 'role': 'dm'},
                           headers=bearer(login(client, 'admin')))
    assert other_dm.status_code == 201
    token = login(client, 'otherdm', 'secret1')
    assert client.patch('/api/campaigns/1', json={'name': 'Hijacked'}, headers=bearer(token)).status_code == 403


def test_update_campaign(client, dm_token):
    response = client.patch('/api/campaigns/1', json={'description': 'Updated'}, headers=bearer(dm_token))
    assert response.get_json()['campaign']['description'] == 'Updated'

    response = client.patch('/api/campaigns/1', json={'current_session_id': 42}, headers=bearer(dm_token))
    assert response.status_code == 400

    game_session = client.post('/api/campaigns/1/sessions', json={'name': 'Session 1'}, headers=bearer(dm_token))
    session_id = game_session.get_json()['session']['id']
    response = client.patch('/api/campaigns/1', json={'current_session_id': session_id}, headers=bearer(dm_token))
    assert response.get_json()['campaign']['current_session_id'] == session_id


def test_delete_campaign(client, dm_token):
    assert client.delete('/api/campaigns/1', headers=bearer(dm_token)).status_code == 200
    assert client.get('/api/campaigns/1', headers=bearer(dm_token)).status_code == 404


def test_malformed_body(client, dm_token):
    response = client.post('/api/campaigns', data='not json', headers=bearer(dm_token))
    assert response.status_code == 400
    assert response.get_json()['error'] == 'validation_error'


def test_delete_campaign_removes_its_content(app, client, dm_token, player_token):
    character = client.post('/api/characters', json={'campaign_id': 1, 'name': 'Bryn'},
                            headers=bearer(player_token)).get_json()['character']
    client.post('/api/characters/%d/inventory' % character['id'], json={'name': 'Rope', 'type': 'tool'},
                headers=bearer(player_token))
    map_id = client.post('/api/campaigns/1/maps', json={'name': 'Keep', 'image_url': '/keep.png'},
                         headers=bearer(dm_token)).get_json()['map']['id']
    client.post('/api/maps/%d/markers' % map_id, json={'type': 'npc', 'x': 1, 'y': 1}, headers=bearer(dm_token))
    client.post('/api/maps/%d/fog' % map_id, json={'points': [{'x': 0, 'y': 0}]}, headers=bearer(dm_token))
    session_id = client.post('/api/campaigns/1/sessions', json={'name': 'Session 1'},
                             headers=bearer(dm_token)).get_json()['session']['id']
    client.post('/api/sessions/%d/encounters' % session_id, json={'name': 'Ambush'}, headers=bearer(dm_token))
    client.post('/api/dice/roll', json={'dice': 'd20', 'campaign_id': 1}, headers=bearer(player_token))

    assert client.delete('/api/campaigns/1', headers=bearer(dm_token)).status_code == 200

    with app.app_context():
        conn = get_db_connection()
        try:
            for table in ('characters', 'inventory', 'maps', 'map_markers', 'fog_of_war',
                          'game_sessions', 'encounters', 'dice_rolls'):
                assert conn.execute('SELECT COUNT(*) FROM %s' % table).fetchone()[0] == 0, table
            assert conn.execute("SELECT campaign_id FROM accounts WHERE username = 'player'").fetchone()[0] is None
        finally:
            conn.close()

    assert client.get('/api/characters/%d' % character['id'], headers=bearer(player_token)).status_code == 404


def test_delete_campaign_keeps_other_campaigns(client, dm_token):
    response = client.post('/api/campaigns', json={'name': 'Other'}, headers=bearer(dm_token))
    other_id = response.get_json()['campaign']['id']
    map_id = client.post('/api/campaigns/%d/maps' % other_id, json={'name': 'Cave', 'image_url': '/cave.png'},
                         headers=bearer(dm_token)).get_json()['map']['id']

    client.delete('/api/campaigns/1', headers=bearer(dm_token))
    assert client.get('/api/maps/%d' % map_id, headers=bearer(dm_token)).status_code == 200
