"""
transfer.py
-----------
Export and import as versioned JSON documents: a character together with its
inventory, or a campaign together with its sessions, encounters, maps,
markers and fog of war.

An import always creates new records and ignores every id, owner and roster in
the document. The whole document is validated before anything is written, and
all of its rows go in with a single commit.
"""

import json

from flask import Blueprint, current_app, jsonify

from . import live
from .campaigns import can_manage, ensure_manager, ensure_member, load_campaign
from .characters import ensure_can_view, insert_character, load_character, parse_character
from .db import get_db_connection, now, row_to_dict
from .errors import Unauthorized, ValidationError
from .game_sessions import parse_enemies, parse_initiative, sessions_for_campaign
from .guard import login_required, require_role
from .inventory import insert_item, list_items, parse_item
from .maps import insert_marker, map_detail, parse_marker, parse_points
from .roles import Role
from .validation import get_json, require_bool, require_number, require_str

transfer_bp = Blueprint('transfer', __name__, url_prefix='/api')

EXPORT_VERSION = '1.0.0'
EXPORT_TYPES = ('character', 'campaign')


def load_document(data, expected_type=None):
    """Return the export document under ``data['data']`` (an object or a JSON string)."""
    document = data.get('data')
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except ValueError:
            raise ValidationError({'data': ['Invalid JSON']})
    if not isinstance(document, dict):
        raise ValidationError({'data': ['Expected an export document']})

    version = document.get('version')
    if version is None:
        raise ValidationError({'version': ['Missing version information']})
    if version != EXPORT_VERSION:
        raise ValidationError({'version': ['Unsupported version: %s' % version]})

    export_type = document.get('type')
    if export_type not in EXPORT_TYPES or not isinstance(document.get(export_type), dict):
        raise ValidationError({'type': ['Unknown export type']})
    if expected_type is not None and export_type != expected_type:
        raise ValidationError({'type': ['Expected a %s export' % expected_type]})
    return document


def _records(document, key):
    records = document.get(key)
    if records is None:
        return []
    if not isinstance(records, list) or not all(isinstance(record, dict) for record in records):
        raise ValidationError({key: ['Expected a list of objects']})
    return records


def preview(document):
    if document['type'] == 'character':
        character = document['character']
        return {
            'name': character.get('name'),
            'class': character.get('class'),
            'level': character.get('level'),
            'item_count': len(_records(document, 'inventory')),
        }
    campaign = document['campaign']
    return {
        'name': campaign.get('name'),
        'description': campaign.get('description'),
        'session_count': len(_records(document, 'sessions')),
        'map_count': len(_records(document, 'maps')),
    }


# ------------------------------------------------------------
# Characters
# ------------------------------------------------------------
def character_document(conn, character):
    return {
        'version': EXPORT_VERSION,
        'type': 'character',
        'exported_at': now(),
        'character': character,
        'inventory': list_items(conn, character['id']),
    }


def parse_character_document(document):
    items = []
    for record in _records(document, 'inventory'):
        item = parse_item(record)
        item['equipped'] = require_bool(record, 'equipped', default=False)
        item['equip_slot'] = require_str(record, 'equip_slot', required=False)
        items.append(item)
    return parse_character(document['character']), items


@transfer_bp.route('/characters/<int:character_id>/export', methods=['GET'])
@login_required
def export_character(account, character_id):
    conn = get_db_connection()
    try:
        character = load_character(conn, character_id)
        ensure_can_view(conn, account, character)
        return jsonify(character_document(conn, character))
    finally:
        conn.close()


@transfer_bp.route('/campaigns/<int:campaign_id>/characters/import', methods=['POST'])
@login_required
def import_character(account, campaign_id):
    data = get_json()
    user_id = require_number(data, 'user_id', default=account.id, integer=True)
    details, items = parse_character_document(load_document(data, 'character'))

    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        ensure_member(account, campaign)
        if user_id != account.id and not can_manage(account, campaign):
            raise Unauthorized('Only the campaign DM can import characters for others')

        character_id = insert_character(conn, user_id, campaign_id, details)
        for item in items:
            insert_item(conn, character_id, item, item['equipped'], item['equip_slot'])
        conn.commit()
        character = load_character(conn, character_id)
        inventory = list_items(conn, character_id)
    finally:
        conn.close()

    current_app.logger.info('%s imported character %s with %d items', account.username, character_id, len(items))
    live.publish('characters', campaign_id)
    return jsonify({'success': True, 'character': character, 'inventory': inventory}), 201


# ------------------------------------------------------------
# Campaigns
# ------------------------------------------------------------
def campaign_document(conn, campaign):
    rows = conn.execute('SELECT * FROM maps WHERE campaign_id = ? ORDER BY id', (campaign['id'],)).fetchall()
    return {
        'version': EXPORT_VERSION,
        'type': 'campaign',
        'exported_at': now(),
        'campaign': campaign,
        'sessions': sessions_for_campaign(conn, campaign['id']),
        'maps': [map_detail(conn, row_to_dict(row), include_hidden=True) for row in rows],
    }


def parse_sessions(document):
    sessions = []
    for record in _records(document, 'sessions'):
        encounters = []
        for encounter in _records(record, 'encounters'):
            encounters.append({
                'name': require_str(encounter, 'name'),
                'enemies': parse_enemies(encounter),
                'initiative': parse_initiative(encounter),
            })
        sessions.append({
            'name': require_str(record, 'name'),
            'date': require_number(record, 'date', default=now()),
            'notes': require_str(record, 'notes', allow_empty=True, default=''),
            'active': require_bool(record, 'active', default=False),
            'encounters': encounters,
        })
    return sessions


def parse_maps(document):
    maps = []
    for record in _records(document, 'maps'):
        fog = []
        for layer in _records(record, 'fog_of_war'):
            fog.append({'points': parse_points(layer), 'revealed': require_bool(layer, 'revealed', default=False)})
        maps.append({
            'name': require_str(record, 'name'),
            'image_url': require_str(record, 'image_url'),
            'markers': [parse_marker(marker) for marker in _records(record, 'markers')],
            'fog_of_war': fog,
        })
    return maps


def insert_sessions(conn, campaign_id, sessions):
    for game_session in sessions:
        cursor = conn.execute(
            'INSERT INTO game_sessions (campaign_id, name, date, notes, active) VALUES (?, ?, ?, ?, ?)',
            (campaign_id, game_session['name'], game_session['date'], game_session['notes'], game_session['active'])
        )
        for encounter in game_session['encounters']:
            conn.execute(
                'INSERT INTO encounters (session_id, name, enemies, initiative) VALUES (?, ?, ?, ?)',
                (cursor.lastrowid, encounter['name'], json.dumps(encounter['enemies']),
                 json.dumps(encounter['initiative']))
            )


def insert_maps(conn, campaign_id, maps):
    timestamp = now()
    for game_map in maps:
        cursor = conn.execute(
            'INSERT INTO maps (campaign_id, name, image_url, created_at, updated_at) VALUES (?, ?, ?, ?, ?)',
            (campaign_id, game_map['name'], game_map['image_url'], timestamp, timestamp)
        )
        map_id = cursor.lastrowid
        for marker in game_map['markers']:
            insert_marker(conn, map_id, marker)
        for layer in game_map['fog_of_war']:
            conn.execute(
                'INSERT INTO fog_of_war (map_id, points, revealed) VALUES (?, ?, ?)',
                (map_id, json.dumps(layer['points']), layer['revealed'])
            )


@transfer_bp.route('/campaigns/<int:campaign_id>/export', methods=['GET'])
@login_required
def export_campaign(account, campaign_id):
    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        # Hidden markers are part of the export
        ensure_manager(account, campaign)
        return jsonify(campaign_document(conn, campaign))
    finally:
        conn.close()


@transfer_bp.route('/campaigns/import', methods=['POST'])
@require_role(Role.DM)
def import_campaign(account):
    data = get_json()
    import_sessions = require_bool(data, 'import_sessions', default=False)
    import_maps = require_bool(data, 'import_maps', default=False)
    document = load_document(data, 'campaign')
    name = require_str(document['campaign'], 'name')
    description = require_str(document['campaign'], 'description', allow_empty=True, default='')
    sessions = parse_sessions(document) if import_sessions else []
    maps = parse_maps(document) if import_maps else []

    conn = get_db_connection()
    try:
        timestamp = now()
        cursor = conn.execute(
            'INSERT INTO campaigns (name, description, dm_id, players, created_at, updated_at) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            (name, description, account.id, '[]', timestamp, timestamp)
        )
        campaign_id = cursor.lastrowid
        insert_sessions(conn, campaign_id, sessions)
        insert_maps(conn, campaign_id, maps)
        conn.commit()
        campaign = load_campaign(conn, campaign_id)
    finally:
        conn.close()

    current_app.logger.info(
        '%s imported campaign %s (%d sessions, %d maps)', account.username, campaign_id, len(sessions), len(maps)
    )
    return jsonify({
        'success': True,
        'campaign': campaign,
        'sessions_imported': len(sessions),
        'maps_imported': len(maps),
    }), 201


@transfer_bp.route('/import/validate', methods=['POST'])
@login_required
def validate_import(account):
    """Check a document without importing it."""
    try:
        document = load_document(get_json())
        result = {'valid': True, 'type': document['type'], 'preview': preview(document)}
    except ValidationError as error:
        result = {'valid': False, 'error': error.message, 'fields': error.fields}
    return jsonify(result)
