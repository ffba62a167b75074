import pytest

from conftest import bearer


@pytest.fixture
def session_id(client, dm_token):
    response = client.post('/api/campaigns/1/sessions', json={'name': 'The Crypt', 'notes': 'Bring torches'},
                           headers=bearer(dm_token))
    assert response.status_code == 201
    return response.get_json()['session']['id']


def test_create_and_list_sessions(client, player_token, session_id):
    sessions = client.get('/api/campaigns/1/sessions', headers=bearer(player_token)).get_json()
    assert [entry['name'] for entry in sessions] == ['The Crypt']
    assert sessions[0]['active'] is False
    assert sessions[0]['encounters'] == []


def test_players_cannot_write_sessions(client, player_token, session_id):
    response = client.post('/api/campaigns/1/sessions', json={'name': 'Mine'}, headers=bearer(player_token))
    assert response.status_code == 403
    response = client.patch('/api/sessions/%d' % session_id, json={'active': True}, headers=bearer(player_token))
    assert response.status_code == 403


def test_update_session(client, dm_token, session_id):
    response = client.patch('/api/sessions/%d' % session_id, json={'active': True, 'notes': ''},
                            headers=bearer(dm_token))
    assert response.get_json()['session']['active'] is True
    assert response.get_json()['session']['notes'] == ''


def test_encounter_initiative_order_and_hp(client, dm_token, player_token, session_id):
    response = client.post('/api/sessions/%d/encounters' % session_id, json={
        'name': 'Ghoul ambush',
        'enemies': [{'id': 'g1', 'name': 'Ghoul', 'hp': 50, 'max_hp': 22, 'ac': 12}],
        'initiative': [
            {'id': 'p1', 'name': 'Lyra', 'initiative': 8, 'type': 'player'},
            {'id': 'g1', 'name': 'Ghoul', 'initiative': 15, 'type': 'enemy'},
        ],
    }, headers=bearer(dm_token))
    assert response.status_code == 201
    encounter = response.get_json()['encounter']
    assert [entry['name'] for entry in encounter['initiative']] == ['Ghoul', 'Lyra']
    assert encounter['enemies'][0]['hp'] == 22

    detail = client.get('/api/sessions/%d' % session_id, headers=bearer(player_token)).get_json()
    assert [entry['name'] for entry in detail['encounters']] == ['Ghoul ambush']


def test_encounter_validation(client, dm_token, session_id):
    response = client.post('/api/sessions/%d/encounters' % session_id, json={
        'name': 'Bad', 'initiative': [{'id': 'x', 'name': 'X', 'initiative': 1, 'type': 'dragon'}],
    }, headers=bearer(dm_token))
    assert response.status_code == 400


def test_update_and_delete_encounter(client, dm_token, session_id):
    encounter_id = client.post('/api/sessions/%d/encounters' % session_id, json={'name': 'Bandits'},
                               headers=bearer(dm_token)).get_json()['encounter']['id']

    response = client.patch('/api/encounters/%d' % encounter_id, json={'name': 'Bandit camp'},
                            headers=bearer(dm_token))
    assert response.get_json()['encounter']['name'] == 'Bandit camp'

    assert client.delete('/api/encounters/%d' % encounter_id, headers=bearer(dm_token)).status_code == 200
    assert client.delete('/api/encounters/%d' % encounter_id, headers=bearer(dm_token)).status_code == 404
