import pytest

from tabletop import auth
from tabletop.auth import TOKEN_PATTERN, SessionCache, get_session_cache, hash_token
from tabletop.db import get_db_connection
from tabletop.errors import InvalidCredentials, ValidationError
from tabletop.roles import Role

from conftest import bearer, login


def test_login_then_resolve_returns_same_account(app):
    with app.app_context():
        token, account = auth.login('player', 'password')
        resolved = auth.resolve(token)
    assert TOKEN_PATTERN.match(token)
    assert resolved.id == account.id
    assert resolved.role is Role.PLAYER


def test_tokens_are_unique(app):
    with app.app_context():
        first, _ = auth.login('dungeonmaster', 'password')
        second, _ = auth.login('dungeonmaster', 'password')
        assert first != second
        assert auth.resolve(first).id == auth.resolve(second).id


def test_tokens_are_stored_hashed(app):
    with app.app_context():
        token, _ = auth.login('dungeonmaster', 'password')
        conn = get_db_connection()
        try:
            stored = [row['token_hash'] for row in conn.execute('SELECT token_hash FROM auth_sessions')]
        finally:
            conn.close()
    assert token not in stored
    assert hash_token(token) in stored


def test_unknown_user_and_wrong_password_look_identical(client):
    unknown = client.post('/api/auth/login', json={'username': 'nobody', 'password': 'password'})
    wrong = client.post('/api/auth/login', json={'username': 'player', 'password': 'wrong-password'})
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.get_json() == wrong.get_json()


def test_login_with_missing_fields(app):
    with app.app_context():
        with pytest.raises(InvalidCredentials):
            auth.login(None, 'password')


@pytest.mark.parametrize('token', [None, '', 'short', '!' * 43, 'a' * 44])
def test_malformed_tokens_resolve_to_nothing(app, token):
    with app.app_context():
        assert auth.resolve(token) is None


def test_unknown_well_formed_token(app):
    with app.app_context():
        assert auth.resolve('A' * 43) is None


def test_session_endpoint(client, player_token):
    response = client.get('/api/auth/session', headers=bearer(player_token))
    assert response.get_json()['account']['username'] == 'player'
    assert 'password_hash' not in response.get_json()['account']

    response = client.get('/api/auth/session', headers=bearer('garbage'))
    assert response.get_json() == {'account': None}


def test_logout_is_idempotent(client, player_token):
    for _ in range(2):
        response = client.post('/api/auth/logout', headers=bearer(player_token))
        assert response.status_code == 200
        assert response.get_json()['success'] is True

    response = client.get('/api/auth/session', headers=bearer(player_token))
    assert response.get_json()['account'] is None


def test_logout_without_session(client):
    response = client.post('/api/auth/logout')
    assert response.get_json() == {'success': True}


def test_logout_of_one_session_keeps_others(client):
    first = login(client, 'dungeonmaster')
    second = login(client, 'dungeonmaster')
    client.post('/api/auth/logout', headers=bearer(first))
    assert client.get('/api/auth/session', headers=bearer(first)).get_json()['account'] is None
    account = client.get('/api/auth/session', headers=bearer(second)).get_json()['account']
    assert account['username'] == 'dungeonmaster'


def test_expired_session_resolves_to_nothing(app, monkeypatch):
    with app.app_context():
        token, _ = auth.login('player', 'password')
        later = auth.now() + 2 * 3600
        monkeypatch.setattr(auth, 'now', lambda: later)
        assert auth.resolve(token) is None
        # Expired rows are removed once seen
        get_session_cache().clear()
        assert auth.resolve(token) is None


def test_purge_expired(app, monkeypatch):
    with app.app_context():
        auth.login('player', 'password')
        later = auth.now() + 2 * 3600
        monkeypatch.setattr(auth, 'now', lambda: later)
        assert auth.purge_expired() == 1


def test_resolve_survives_cache_loss(app):
    with app.app_context():
        token, account = auth.login('dungeonmaster', 'password')
        get_session_cache().clear()
        assert auth.resolve(token).id == account.id


def test_role_change_ends_sessions(client, admin_token, player_token):
    response = client.put('/api/users/2/role', json={'role': 'dm'}, headers=bearer(admin_token))
    assert response.status_code == 200
    assert response.get_json()['account']['role'] == 'dm'

    assert client.get('/api/auth/session', headers=bearer(player_token)).get_json()['account'] is None
    token = login(client, 'player')
    assert client.get('/api/auth/session', headers=bearer(token)).get_json()['account']['role'] == 'dm'


def test_register_creates_players_only(client):
    response = client.post('/api/auth/register', json={'username': 'newbie', 'password': 'secret1', 'role': 'admin'})
    assert response.status_code == 201
    assert response.get_json()['account']['role'] == 'player'


def test_register_rejects_duplicates_and_bad_input(client):
    response = client.post('/api/auth/register', json={'username': 'player', 'password': 'secret1'})
    assert response.status_code == 400
    assert response.get_json()['fields']['username'] == ['Username already exists']

    response = client.post('/api/auth/register', json={'username': 'a b', 'password': '123'})
    assert response.status_code == 400
    assert set(response.get_json()['fields']) == {'username', 'password'}


def test_register_function_validates(app):
    with app.app_context():
        with pytest.raises(ValidationError):
            auth.register('x', 'password')


def test_session_cache_forget_account():
    cache = SessionCache()
    account = type('Account', (), {'id': 7})()
    other = type('Account', (), {'id': 8})()
    cache.put('a', account, float('inf'))
    cache.put('b', account, float('inf'))
    cache.put('c', other, float('inf'))
    cache.forget_account(7)
    assert len(cache) == 1
    assert cache.get('c') is other


def test_purge_expired_empties_the_cache(app, monkeypatch):
    with app.app_context():
        for _ in range(20):
            auth.login('player', 'password')
        cache = get_session_cache()
        assert len(cache) == 20

        later = auth.now() + 2 * 3600
        monkeypatch.setattr(auth, 'now', lambda: later)
        assert auth.purge_expired() == 20
        assert len(cache) == 0


def test_session_cache_sweeps_expired_entries_on_insert(monkeypatch):
    cache = SessionCache()
    account = type('Account', (), {'id': 7})()
    monkeypatch.setattr(auth, 'now', lambda: 1000.0)
    for index in range(10):
        cache.put('old-%d' % index, account, 1500.0)
    monkeypatch.setattr(auth, 'now', lambda: 2000.0)
    cache.put('fresh', account, 5000.0)
    assert len(cache) == 1
    assert cache.purge(6000.0) == 1
    assert len(cache) == 0
