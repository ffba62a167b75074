import pytest

from tabletop import create_app, socketio

DEMO_PASSWORD = 'password'


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'DATABASE': str(tmp_path / 'tabletop-test.db'),
        'SEED_DEMO_ACCOUNTS': True,
        'SESSION_LIFETIME_HOURS': 1,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username, password=DEMO_PASSWORD):
    response = client.post('/api/auth/login', json={'username': username, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()['token']


def bearer(token):
    return {'Authorization': 'Bearer %s' % token}


@pytest.fixture
def dm_token(client):
    return login(client, 'dungeonmaster')


@pytest.fixture
def player_token(client):
    return login(client, 'player')


@pytest.fixture
def admin_token(client):
    return login(client, 'admin')


@pytest.fixture
def outsider_token(client):
    """A player who is not on the demo campaign's roster."""
    response = client.post('/api/auth/register', json={'username': 'outsider', 'password': 'hunter22'})
    assert response.status_code == 201
    return login(client, 'outsider', 'hunter22')


@pytest.fixture
def socket_client(app):
    clients = []

    def connect(token):
        socket = socketio.test_client(app, auth={'token': token})
        clients.append(socket)
        return socket

    yield connect
    for socket in clients:
        if socket.is_connected():
            socket.disconnect()
