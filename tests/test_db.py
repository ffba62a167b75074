import sqlite3

from tabletop import create_app
from tabletop.db import DEMO_ACCOUNTS, get_db_connection
from tabletop.roles import Role
from tabletop.validation import validate_credentials


def test_demo_data_is_seeded_once(app):
    with app.app_context():
        conn = get_db_connection()
        try:
            accounts = conn.execute('SELECT username, role FROM accounts ORDER BY id').fetchall()
            campaigns = conn.execute('SELECT name FROM campaigns').fetchall()
        finally:
            conn.close()
    assert [(row['username'], row['role']) for row in accounts] == [('dungeonmaster', 'dm'), ('player', 'player'),
                                                                     ('admin', 'admin')]
    assert [row['name'] for row in campaigns] == ['Demo Campaign']

    result = app.test_cli_runner().invoke(args=['init-db'])
    assert 'Database initialised' in result.output
    with app.app_context():
        conn = get_db_connection()
        try:
            assert conn.execute('SELECT COUNT(*) FROM campaigns').fetchone()[0] == 1
        finally:
            conn.close()


def test_no_demo_accounts_when_disabled(tmp_path):
    app = create_app({'TESTING': True, 'DATABASE': str(tmp_path / 'empty.db'), 'SEED_DEMO_ACCOUNTS': False})
    with app.app_context():
        conn = get_db_connection()
        try:
            assert conn.execute('SELECT COUNT(*) FROM accounts').fetchone()[0] == 0
        finally:
            conn.close()


def test_passwords_are_hashed(app):
    with app.app_context():
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT password_hash FROM accounts WHERE username = 'player'").fetchone()
        finally:
            conn.close()
    assert row['password_hash'] != 'password'


def test_demo_accounts_can_log_in(tmp_path):
    app = create_app({'TESTING': True, 'DATABASE': str(tmp_path / 'demo.db'), 'SEED_DEMO_ACCOUNTS': True})
    client = app.test_client()
    for username, password, role in DEMO_ACCOUNTS:
        response = client.post('/api/auth/login', json={'username': username, 'password': password})
        assert response.status_code == 200, username
        assert response.get_json()['account']['role'] == role


def test_demo_accounts_pass_validation():
    for username, password, role in DEMO_ACCOUNTS:
        validate_credentials(username, password)
        Role.parse(role)


def test_older_databases_gain_new_columns(tmp_path):
    path = tmp_path / 'old.db'
    conn = sqlite3.connect(str(path))
    conn.execute(
        'CREATE TABLE dice_rolls (id INTEGER PRIMARY KEY AUTOINCREMENT, session_id INTEGER, campaign_id INTEGER, '
        'user_id INTEGER NOT NULL, character_name TEXT, dice_type TEXT NOT NULL, dice_count INTEGER NOT NULL, '
        'modifier INTEGER NOT NULL DEFAULT 0, roll_type TEXT NOT NULL DEFAULT \'normal\', results TEXT NOT NULL, '
        'total INTEGER NOT NULL, purpose TEXT, target_dc INTEGER, success BOOLEAN, timestamp REAL NOT NULL)'
    )
    conn.commit()
    conn.close()

    app = create_app({'TESTING': True, 'DATABASE': str(path), 'SEED_DEMO_ACCOUNTS': False})
    with app.app_context():
        conn = get_db_connection()
        try:
            columns = [row['name'] for row in conn.execute('PRAGMA table_info(dice_rolls)')]
        finally:
            conn.close()
    assert 'kept' in columns
