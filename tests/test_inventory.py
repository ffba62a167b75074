import pytest

from conftest import bearer


@pytest.fixture
def character_id(client, player_token):
    response = client.post('/api/characters', json={'campaign_id': 1, 'name': 'Lyra'}, headers=bearer(player_token))
    return response.get_json()['character']['id']


def add_item(client, token, character_id, **fields):
    body = {'name': 'Rope', 'type': 'tool'}
    body.update(fields)
    return client.post('/api/characters/%d/inventory' % character_id, json=body, headers=bearer(token))


def test_add_and_summarise(client, player_token, character_id):
    assert add_item(client, player_token, character_id, weight=2.5, quantity=2).status_code == 201
    add_item(client, player_token, character_id, name='Longsword', type='weapon', weight=3,
             properties={'damage': '1d8'})

    summary = client.get('/api/characters/%d/inventory' % character_id, headers=bearer(player_token)).get_json()
    assert [item['name'] for item in summary['items']] == ['Longsword', 'Rope']
    assert summary['total_weight'] == 8.0
    assert summary['items'][0]['properties'] == {'damage': '1d8'}
    assert summary['equipped'] == []


def test_item_type_is_checked(client, player_token, character_id):
    response = add_item(client, player_token, character_id, type='spaceship')
    assert response.status_code == 400
    assert 'type' in response.get_json()['fields']


def test_equip(client, player_token, character_id):
    item_id = add_item(client, player_token, character_id, name='Shield', type='armor').get_json()['item']['id']

    response = client.post('/api/inventory/%d/equip' % item_id, json={'equipped': True, 'equip_slot': 'off_hand'},
                           headers=bearer(player_token))
    assert response.get_json()['item']['equipped'] is True
    assert response.get_json()['item']['equip_slot'] == 'off_hand'

    equipped = client.get('/api/characters/%d/inventory/equipped' % character_id, headers=bearer(player_token))
    assert [item['id'] for item in equipped.get_json()] == [item_id]

    response = client.post('/api/inventory/%d/equip' % item_id, json={'equipped': False}, headers=bearer(player_token))
    assert response.get_json()['item']['equip_slot'] is None


def test_quantity_zero_removes_item(client, player_token, character_id):
    item_id = add_item(client, player_token, character_id, name='Potion', type='potion',
                       quantity=3).get_json()['item']['id']

    response = client.post('/api/inventory/%d/quantity' % item_id, json={'quantity': 1}, headers=bearer(player_token))
    assert response.get_json()['item']['quantity'] == 1

    response = client.post('/api/inventory/%d/quantity' % item_id, json={'quantity': 0}, headers=bearer(player_token))
    assert response.get_json()['removed'] is True
    assert client.get('/api/inventory/%d' % item_id, headers=bearer(player_token)).status_code == 404


def test_outsider_cannot_touch_inventory(client, player_token, outsider_token, character_id):
    item_id = add_item(client, player_token, character_id).get_json()['item']['id']
    assert client.get('/api/characters/%d/inventory' % character_id,
                      headers=bearer(outsider_token)).status_code == 403
    assert client.delete('/api/inventory/%d' % item_id, headers=bearer(outsider_token)).status_code == 403


def test_dm_can_edit_items(client, player_token, dm_token, character_id):
    item_id = add_item(client, player_token, character_id).get_json()['item']['id']
    response = client.patch('/api/inventory/%d' % item_id, json={'description': 'Fifty feet'},
                            headers=bearer(dm_token))
    assert response.get_json()['item']['description'] == 'Fifty feet'
