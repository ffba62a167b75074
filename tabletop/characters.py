"""
characters.py
-------------
Character sheets: identity, level, ability scores and combat stats.
Owners, their campaign DM and admins may change a character.
"""

from flask import Blueprint, current_app, jsonify, request

from . import live
from .campaigns import authorize_view, can_manage, ensure_member, load_campaign
from .db import get_db_connection, now
from .dnd import ABILITIES, ability_modifier, ability_name, clamp_hp, format_modifier
from .errors import NotFound, Unauthorized, ValidationError
from .guard import login_required
from .roles import Role, has_role
from .validation import get_json, require_number, require_str

characters_bp = Blueprint('characters', __name__, url_prefix='/api/characters')

STAT_FIELDS = ABILITIES + ('hp', 'max_hp', 'ac', 'speed')
DETAIL_FIELDS = ('name', 'race', 'class', 'portrait_url', 'backstory')


def character_to_dict(row):
    data = {
        'id': row['id'],
        'user_id': row['user_id'],
        'campaign_id': row['campaign_id'],
        'name': row['name'],
        'race': row['race'],
        'class': row['class'],
        'level': row['level'],
        'stats': {name: row[name] for name in STAT_FIELDS},
        'portrait_url': row['portrait_url'],
        'backstory': row['backstory'],
        'created_at': row['created_at'],
        'updated_at': row['updated_at'],
    }
    return data


def load_character(conn, character_id):
    row = conn.execute('SELECT * FROM characters WHERE id = ?', (character_id,)).fetchone()
    if row is None:
        raise NotFound('Character not found')
    return character_to_dict(row)


def can_edit(conn, account, character):
    if character['user_id'] == account.id or has_role(account, Role.ADMIN):
        return True
    try:
        campaign = load_campaign(conn, character['campaign_id'])
    except NotFound:
        return False
    return can_manage(account, campaign)


def ensure_can_view(conn, account, character):
    if character['user_id'] == account.id:
        return
    ensure_member(account, load_campaign(conn, character['campaign_id']))


def ensure_can_edit(conn, account, character):
    if not can_edit(conn, account, character):
        raise Unauthorized('You cannot change this character')


def parse_stats(data, current=None):
    """Validate a stats object. Missing keys fall back to ``current`` (or defaults)."""
    stats = data.get('stats')
    if stats is None:
        stats = {}
    if not isinstance(stats, dict):
        raise ValidationError({'stats': ['Expected an object']})

    defaults = current or {'hp': 10, 'max_hp': 10, 'ac': 10, 'speed': 30}
    parsed = {}
    for name in STAT_FIELDS:
        default = defaults.get(name, 10)
        parsed[name] = require_number(stats, name, default=default, integer=True, minimum=0)
    if parsed['max_hp'] < 1:
        raise ValidationError({'max_hp': ['Must be at least 1']})
    parsed['hp'] = clamp_hp(parsed['hp'], parsed['max_hp'])
    return parsed


def parse_character(data):
    """Validate the details and stats of a new character."""
    return {
        'name': require_str(data, 'name'),
        'race': require_str(data, 'race', allow_empty=True, default=''),
        'class': require_str(data, 'class', allow_empty=True, default=''),
        'level': require_number(data, 'level', default=1, integer=True, minimum=1),
        'portrait_url': require_str(data, 'portrait_url', required=False),
        'backstory': require_str(data, 'backstory', allow_empty=True, required=False),
        'stats': parse_stats(data),
    }


def insert_character(conn, user_id, campaign_id, character):
    timestamp = now()
    columns = ('user_id', 'campaign_id', 'name', 'race', 'class', 'level') + STAT_FIELDS + (
        'portrait_url', 'backstory', 'created_at', 'updated_at')
    values = (user_id, campaign_id, character['name'], character['race'], character['class'], character['level'])
    values += tuple(character['stats'][field] for field in STAT_FIELDS)
    values += (character['portrait_url'], character['backstory'], timestamp, timestamp)
    cursor = conn.execute(
        'INSERT INTO characters (%s) VALUES (%s)' % (', '.join(columns), ', '.join('?' * len(columns))),
        values
    )
    return cursor.lastrowid


def character_sheet(character):
    sheet = dict(character)
    sheet['modifiers'] = {}
    for name in ABILITIES:
        modifier = ability_modifier(character['stats'][name])
        sheet['modifiers'][name] = {
            'name': ability_name(name),
            'value': modifier,
            'display': format_modifier(modifier),
        }
    return sheet


def _snapshot(conn, campaign_id, audience):
    rows = conn.execute(
        'SELECT * FROM characters WHERE campaign_id = ? ORDER BY name', (campaign_id,)
    ).fetchall()
    return [character_to_dict(row) for row in rows]


live.register_topic('characters', _snapshot, authorize_view)


@characters_bp.route('', methods=['GET'])
@login_required
def list_characters(account):
    campaign_id = request.args.get('campaign_id', type=int)
    user_id = request.args.get('user_id', type=int)

    conn = get_db_connection()
    try:
        if campaign_id is not None:
            ensure_member(account, load_campaign(conn, campaign_id))
            rows = conn.execute(
                'SELECT * FROM characters WHERE campaign_id = ? ORDER BY name', (campaign_id,)
            ).fetchall()
        else:
            user_id = user_id or account.id
            if user_id != account.id and not has_role(account, Role.ADMIN):
                raise Unauthorized('You can only list your own characters')
            rows = conn.execute(
                'SELECT * FROM characters WHERE user_id = ? ORDER BY name', (user_id,)
            ).fetchall()
        return jsonify([character_to_dict(row) for row in rows])
    finally:
        conn.close()


@characters_bp.route('/<int:character_id>', methods=['GET'])
@login_required
def get_character(account, character_id):
    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_view(conn, account, character)
        return jsonify(character)
    finally:
        conn.close()


@characters_bp.route('/<int:character_id>/sheet', methods=['GET'])
@login_required
def get_character_sheet(account, character_id):
    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_view(conn, account, character)
        return jsonify(character_sheet(character))
    finally:
        conn.close()


@characters_bp.route('', methods=['POST'])
@login_required
def create_character(account):
    data = get_json()
    campaign_id = require_number(data, 'campaign_id', integer=True)
    user_id = require_number(data, 'user_id', default=account.id, integer=True)
    details = parse_character(data)

    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        ensure_member(account, campaign)
        if user_id != account.id and not can_manage(account, campaign):
            raise Unauthorized('Only the campaign DM can create characters for others')

        character_id = insert_character(conn, user_id, campaign_id, details)
        conn.commit()
        character = load_character(conn, character_id)
    finally:
        conn.close()

    current_app.logger.info('%s created character %s', account.username, character['id'])
    live.publish('characters', campaign_id)
    return jsonify({'success': True, 'character': character}), 201


@characters_bp.route('/<int:character_id>', methods=['PATCH'])
@login_required
def update_character(account, character_id):
    data = get_json()
    updates = {}
    for field in DETAIL_FIELDS:
        if field in data:
            updates[field] = require_str(data, field, allow_empty=field != 'name', required=field == 'name')
    if 'level' in data:
        updates['level'] = require_number(data, 'level', integer=True, minimum=1)

    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_edit(conn, account, character)
        if updates:
            updates['updated_at'] = now()
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute(
                'UPDATE characters SET %s WHERE id = ?' % assignments,
                tuple(updates.values()) + (character_id,)
            )
            conn.commit()
        character = load_character(conn, character_id)
    finally:
        conn.close()

    live.publish('characters', character['campaign_id'])
    return jsonify({'success': True, 'character': character})


@characters_bp.route('/<int:character_id>/stats', methods=['PUT'])
@login_required
def update_stats(account, character_id):
    data = get_json()

    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_edit(conn, account, character)
        stats = parse_stats(data, current=character['stats'])

        assignments = ', '.join('%s = ?' % column for column in STAT_FIELDS)
        conn.execute(
            'UPDATE characters SET %s, updated_at = ? WHERE id = ?' % assignments,
            tuple(stats[field] for field in STAT_FIELDS) + (now(), character_id)
        )
        conn.commit()
        character = load_character(conn, character_id)
    finally:
        conn.close()

    live.publish('characters', character['campaign_id'])
    return jsonify({'success': True, 'character': character})


@characters_bp.route('/<int:character_id>/hp', methods=['PATCH'])
@login_required
def update_hp(account, character_id):
    data = get_json()
    # Out-of-range values are clamped, not rejected
    hp = require_number(data, 'hp', integer=True)

    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_edit(conn, account, character)
        stored = clamp_hp(hp, character['stats']['max_hp'])
        conn.execute(
            'UPDATE characters SET hp = ?, updated_at = ? WHERE id = ?', (stored, now(), character_id)
        )
        conn.commit()
        character = load_character(conn, character_id)
    finally:
        conn.close()

    live.publish('characters', character['campaign_id'])
    return jsonify({'success': True, 'hp': stored, 'character': character})


@characters_bp.route('/<int:character_id>/level-up', methods=['POST'])
@login_required
def level_up(account, character_id):
    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_edit(conn, account, character)
        conn.execute(
            'UPDATE characters SET level = ?, updated_at = ? WHERE id = ?',
            (character['level'] + 1, now(), character_id)
        )
        conn.commit()
        character = load_character(conn, character_id)
    finally:
        conn.close()

    live.publish('characters', character['campaign_id'])
    return jsonify({'success': True, 'character': character})


@characters_bp.route('/<int:character_id>', methods=['DELETE'])
@login_required
def delete_character(account, character_id):
    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_edit(conn, account, character)
        conn.execute('DELETE FROM inventory WHERE character_id = ?', (character_id,))
        conn.execute('DELETE FROM characters WHERE id = ?', (character_id,))
        conn.commit()
    finally:
        conn.close()

    current_app.logger.info('%s deleted character %s', account.username, character_id)
    live.publish('characters', character['campaign_id'])
    return jsonify({'success': True})
