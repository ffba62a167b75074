"""
game_sessions.py
----------------
Play sessions of a campaign (date, notes, active flag) and the encounters run
during them. Only the campaign DM writes; every member reads.
"""

import json

from flask import Blueprint, jsonify

from . import live
from .campaigns import authorize_view, ensure_manager, ensure_member, load_campaign
from .db import get_db_connection, now, row_to_dict
from .dnd import clamp_hp
from .errors import NotFound, ValidationError
from .guard import login_required
from .validation import get_json, require_bool, require_choice, require_number, require_str

sessions_bp = Blueprint('game_sessions', __name__, url_prefix='/api')

COMBATANT_TYPES = ('player', 'enemy', 'npc')


def session_to_dict(row):
    data = row_to_dict(row)
    data['active'] = bool(data['active'])
    return data


def encounter_to_dict(row):
    return row_to_dict(row, json_fields=('enemies', 'initiative'))


def load_session(conn, session_id):
    row = conn.execute('SELECT * FROM game_sessions WHERE id = ?', (session_id,)).fetchone()
    if row is None:
        raise NotFound('Session not found')
    return session_to_dict(row)


def load_encounter(conn, encounter_id):
    row = conn.execute('SELECT * FROM encounters WHERE id = ?', (encounter_id,)).fetchone()
    if row is None:
        raise NotFound('Encounter not found')
    return encounter_to_dict(row)


def with_encounters(conn, game_session):
    rows = conn.execute(
        'SELECT * FROM encounters WHERE session_id = ? ORDER BY id', (game_session['id'],)
    ).fetchall()
    composed = dict(game_session)
    composed['encounters'] = [encounter_to_dict(row) for row in rows]
    return composed


def sessions_for_campaign(conn, campaign_id):
    rows = conn.execute(
        'SELECT * FROM game_sessions WHERE campaign_id = ? ORDER BY date DESC, id DESC', (campaign_id,)
    ).fetchall()
    return [with_encounters(conn, session_to_dict(row)) for row in rows]


def parse_enemies(data):
    enemies = data.get('enemies', [])
    if not isinstance(enemies, list):
        raise ValidationError({'enemies': ['Expected a list']})
    parsed = []
    for enemy in enemies:
        if not isinstance(enemy, dict):
            raise ValidationError({'enemies': ['Each enemy must be an object']})
        max_hp = require_number(enemy, 'max_hp', integer=True, minimum=1)
        parsed.append({
            'id': require_str(enemy, 'id'),
            'name': require_str(enemy, 'name'),
            'hp': clamp_hp(require_number(enemy, 'hp', default=max_hp, integer=True), max_hp),
            'max_hp': max_hp,
            'ac': require_number(enemy, 'ac', default=10, integer=True, minimum=0),
            'initiative_bonus': require_number(enemy, 'initiative_bonus', default=0, integer=True),
        })
    return parsed


def parse_initiative(data):
    entries = data.get('initiative', [])
    if not isinstance(entries, list):
        raise ValidationError({'initiative': ['Expected a list']})
    parsed = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError({'initiative': ['Each entry must be an object']})
        parsed.append({
            'id': require_str(entry, 'id'),
            'name': require_str(entry, 'name'),
            'initiative': require_number(entry, 'initiative', integer=True),
            'type': require_choice(entry, 'type', COMBATANT_TYPES),
        })
    # Highest initiative acts first
    return sorted(parsed, key=lambda entry: entry['initiative'], reverse=True)


def _session_for_edit(conn, account, session_id):
    game_session = load_session(conn, session_id)
    ensure_manager(account, load_campaign(conn, game_session['campaign_id']))
    return game_session


def _snapshot(conn, campaign_id, audience):
    return sessions_for_campaign(conn, campaign_id)


live.register_topic('sessions', _snapshot, authorize_view)


@sessions_bp.route('/campaigns/<int:campaign_id>/sessions', methods=['GET'])
@login_required
def list_sessions(account, campaign_id):
    conn = get_db_connection()
    try:
        ensure_member(account, load_campaign(conn, campaign_id))
        return jsonify(sessions_for_campaign(conn, campaign_id))
    finally:
        conn.close()


@sessions_bp.route('/campaigns/<int:campaign_id>/sessions', methods=['POST'])
@login_required
def create_session(account, campaign_id):
    data = get_json()
    name = require_str(data, 'name')
    date = require_number(data, 'date', default=now())
    notes = require_str(data, 'notes', allow_empty=True, default='')
    active = require_bool(data, 'active', default=False)

    conn = get_db_connection()
    try:
        ensure_manager(account, load_campaign(conn, campaign_id))
        cursor = conn.execute(
            'INSERT INTO game_sessions (campaign_id, name, date, notes, active) VALUES (?, ?, ?, ?, ?)',
            (campaign_id, name, date, notes, active)
        )
        conn.commit()
        game_session = with_encounters(conn, load_session(conn, cursor.lastrowid))
    finally:
        conn.close()

    live.publish('sessions', campaign_id)
    return jsonify({'success': True, 'session': game_session}), 201


@sessions_bp.route('/sessions/<int:session_id>', methods=['GET'])
@login_required
def get_session(account, session_id):
    conn = get_db_connection()
    try:
        game_session = load_session(conn, session_id)
        ensure_member(account, load_campaign(conn, game_session['campaign_id']))
        return jsonify(with_encounters(conn, game_session))
    finally:
        conn.close()


@sessions_bp.route('/sessions/<int:session_id>', methods=['PATCH'])
@login_required
def update_session(account, session_id):
    data = get_json()
    updates = {}
    if 'name' in data:
        updates['name'] = require_str(data, 'name')
    if 'date' in data:
        updates['date'] = require_number(data, 'date')
    if 'notes' in data:
        updates['notes'] = require_str(data, 'notes', allow_empty=True)
    if 'active' in data:
        updates['active'] = require_bool(data, 'active')

    conn = get_db_connection()
    try:
        game_session = _session_for_edit(conn, account, session_id)
        if updates:
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute(
                'UPDATE game_sessions SET %s WHERE id = ?' % assignments, tuple(updates.values()) + (session_id,)
            )
            conn.commit()
        game_session = with_encounters(conn, load_session(conn, session_id))
    finally:
        conn.close()

    live.publish('sessions', game_session['campaign_id'])
    return jsonify({'success': True, 'session': game_session})


@sessions_bp.route('/sessions/<int:session_id>/encounters', methods=['POST'])
@login_required
def create_encounter(account, session_id):
    data = get_json()
    name = require_str(data, 'name')
    enemies = parse_enemies(data)
    initiative = parse_initiative(data)

    conn = get_db_connection()
    try:
        game_session = _session_for_edit(conn, account, session_id)
        cursor = conn.execute(
            'INSERT INTO encounters (session_id, name, enemies, initiative) VALUES (?, ?, ?, ?)',
            (session_id, name, json.dumps(enemies), json.dumps(initiative))
        )
        conn.commit()
        encounter = load_encounter(conn, cursor.lastrowid)
    finally:
        conn.close()

    live.publish('sessions', game_session['campaign_id'])
    return jsonify({'success': True, 'encounter': encounter}), 201


@sessions_bp.route('/encounters/<int:encounter_id>', methods=['PATCH'])
@login_required
def update_encounter(account, encounter_id):
    data = get_json()
    updates = {}
    if 'name' in data:
        updates['name'] = require_str(data, 'name')
    if 'enemies' in data:
        updates['enemies'] = json.dumps(parse_enemies(data))
    if 'initiative' in data:
        updates['initiative'] = json.dumps(parse_initiative(data))

    conn = get_db_connection()
    try:
        encounter = load_encounter(conn, encounter_id)
        game_session = _session_for_edit(conn, account, encounter['session_id'])
        if updates:
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute(
                'UPDATE encounters SET %s WHERE id = ?' % assignments, tuple(updates.values()) + (encounter_id,)
            )
            conn.commit()
        encounter = load_encounter(conn, encounter_id)
    finally:
        conn.close()

    live.publish('sessions', game_session['campaign_id'])
    return jsonify({'success': True, 'encounter': encounter})


@sessions_bp.route('/encounters/<int:encounter_id>', methods=['DELETE'])
@login_required
def delete_encounter(account, encounter_id):
    conn = get_db_connection()
    try:
        encounter = load_encounter(conn, encounter_id)
        game_session = _session_for_edit(conn, account, encounter['session_id'])
        conn.execute('DELETE FROM encounters WHERE id = ?', (encounter_id,))
        conn.commit()
    finally:
        conn.close()

    live.publish('sessions', game_session['campaign_id'])
    return jsonify({'success': True})
