"""
db.py
-----
Creates and manages the SQLite database behind the campaign manager. Every
handler opens its own connection, performs one single-record read-modify-write
and closes it again; nothing here spans records in a transaction.
"""

import json
import sqlite3
import time

import click
from flask import current_app
from flask.cli import with_appcontext

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'player',
        campaign_id INTEGER,
        created_at REAL NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS auth_sessions (
        token_hash TEXT PRIMARY KEY,
        account_id INTEGER NOT NULL,
        created_at REAL NOT NULL,
        expires_at REAL NOT NULL,
        FOREIGN KEY (account_id) REFERENCES accounts (id) ON DELETE CASCADE
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_auth_sessions_account ON auth_sessions (account_id)',
    '''
    CREATE TABLE IF NOT EXISTS campaigns (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        dm_id INTEGER NOT NULL,
        players TEXT NOT NULL DEFAULT '[]',
        current_session_id INTEGER,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_campaigns_dm ON campaigns (dm_id)',
    '''
    CREATE TABLE IF NOT EXISTS characters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        campaign_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        race TEXT NOT NULL DEFAULT '',
        class TEXT NOT NULL DEFAULT '',
        level INTEGER NOT NULL DEFAULT 1,
        strength INTEGER NOT NULL DEFAULT 10,
        dexterity INTEGER NOT NULL DEFAULT 10,
        constitution INTEGER NOT NULL DEFAULT 10,
        intelligence INTEGER NOT NULL DEFAULT 10,
        wisdom INTEGER NOT NULL DEFAULT 10,
        charisma INTEGER NOT NULL DEFAULT 10,
        hp INTEGER NOT NULL DEFAULT 10,
        max_hp INTEGER NOT NULL DEFAULT 10,
        ac INTEGER NOT NULL DEFAULT 10,
        speed INTEGER NOT NULL DEFAULT 30,
        portrait_url TEXT,
        backstory TEXT,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_characters_user ON characters (user_id)',
    'CREATE INDEX IF NOT EXISTS idx_characters_campaign ON characters (campaign_id)',
    '''
    CREATE TABLE IF NOT EXISTS inventory (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        character_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1,
        weight REAL NOT NULL DEFAULT 0,
        description TEXT,
        properties TEXT NOT NULL DEFAULT '{}',
        equipped BOOLEAN NOT NULL DEFAULT 0,
        equip_slot TEXT
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_inventory_character ON inventory (character_id)',
    '''
    CREATE TABLE IF NOT EXISTS maps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        image_url TEXT NOT NULL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_maps_campaign ON maps (campaign_id)',
    '''
    CREATE TABLE IF NOT EXISTS map_markers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        map_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        x REAL NOT NULL,
        y REAL NOT NULL,
        label TEXT,
        color TEXT,
        icon_url TEXT,
        visible BOOLEAN NOT NULL DEFAULT 1
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_map_markers_map ON map_markers (map_id)',
    '''
    CREATE TABLE IF NOT EXISTS fog_of_war (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        map_id INTEGER NOT NULL,
        points TEXT NOT NULL DEFAULT '[]',
        revealed BOOLEAN NOT NULL DEFAULT 0
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_fog_of_war_map ON fog_of_war (map_id)',
    '''
    CREATE TABLE IF NOT EXISTS game_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        date REAL NOT NULL,
        notes TEXT NOT NULL DEFAULT '',
        active BOOLEAN NOT NULL DEFAULT 0
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_game_sessions_campaign ON game_sessions (campaign_id)',
    '''
    CREATE TABLE IF NOT EXISTS encounters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        enemies TEXT NOT NULL DEFAULT '[]',
        initiative TEXT NOT NULL DEFAULT '[]'
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_encounters_session ON encounters (session_id)',
    '''
    CREATE TABLE IF NOT EXISTS dice_rolls (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER,
        campaign_id INTEGER,
        user_id INTEGER NOT NULL,
        character_name TEXT,
        dice_type TEXT NOT NULL,
        dice_count INTEGER NOT NULL,
        modifier INTEGER NOT NULL DEFAULT 0,
        roll_type TEXT NOT NULL DEFAULT 'normal',
        results TEXT NOT NULL,
        kept TEXT NOT NULL DEFAULT '[]',
        total INTEGER NOT NULL,
        purpose TEXT,
        target_dc INTEGER,
        success BOOLEAN,
        timestamp REAL NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_dice_rolls_session ON dice_rolls (session_id)',
    'CREATE INDEX IF NOT EXISTS idx_dice_rolls_user ON dice_rolls (user_id)',
]

# Columns added after the first release; older databases get them on startup
ADDED_COLUMNS = [
    ('dice_rolls', 'kept', "TEXT NOT NULL DEFAULT '[]'"),
]

DEMO_ACCOUNTS = [
    ('dungeonmaster', 'password', 'dm'),
    ('player', 'password', 'player'),
    ('admin', 'password', 'admin'),
]


def get_db_connection():
    conn = sqlite3.connect(current_app.config['DATABASE'])
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def now():
    return time.time()


def row_to_dict(row, json_fields=()):
    """Convert a row to a plain dict, decoding the named JSON text columns."""
    if row is None:
        return None
    data = dict(row)
    for field in json_fields:
        value = data.get(field)
        data[field] = json.loads(value) if value else None
    return data


def add_missing_columns(conn):
    for table, column, definition in ADDED_COLUMNS:
        existing = [row['name'] for row in conn.execute('PRAGMA table_info(%s)' % table)]
        if column not in existing:
            conn.execute('ALTER TABLE %s ADD COLUMN %s %s' % (table, column, definition))
            current_app.logger.info('Added column %s.%s', table, column)


def init_db():
    conn = get_db_connection()
    try:
        for statement in SCHEMA:
            conn.execute(statement)
        add_missing_columns(conn)
        conn.commit()
    finally:
        conn.close()

    if current_app.config.get('SEED_DEMO_ACCOUNTS'):
        seed_demo_data()


def seed_demo_data():
    # Imported here: accounts depends on this module
    from .accounts import create_account, find_by_username

    conn = get_db_connection()
    try:
        created = []
        for username, password, role in DEMO_ACCOUNTS:
            if find_by_username(conn, username) is None:
                create_account(conn, username, password, role)
                created.append(username)

        if created:
            dm = find_by_username(conn, 'dungeonmaster')
            player = find_by_username(conn, 'player')
            timestamp = now()
            cursor = conn.execute(
                'INSERT INTO campaigns (name, description, dm_id, players, created_at, updated_at) '
                'VALUES (?, ?, ?, ?, ?, ?)',
                ('Demo Campaign', 'A starter campaign for trying things out.', dm['id'],
                 json.dumps([player['id']]), timestamp, timestamp)
            )
            conn.execute('UPDATE accounts SET campaign_id = ? WHERE id = ?', (cursor.lastrowid, player['id']))
            conn.commit()
            current_app.logger.info('Demo accounts created: %s (password: password)', ', '.join(created))
    finally:
        conn.close()


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create tables and, outside production, demo accounts."""
    init_db()
    click.echo('Database initialised.')
