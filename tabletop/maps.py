"""
maps.py
-------
Campaign maps, the markers placed on them and fog-of-war layers.

Only the campaign DM (or an admin) edits a map. Players never see a marker
whose ``visible`` flag is off, whether they read it over HTTP or receive it
in a live snapshot. Players may move ``player`` markers, like moving their own
token on the table.
"""

import json

from flask import Blueprint, current_app, jsonify

from . import live
from .campaigns import authorize_view, can_manage, ensure_manager, ensure_member, load_campaign
from .db import get_db_connection, now, row_to_dict
from .errors import NotFound, Unauthorized, ValidationError
from .guard import login_required
from .validation import get_json, require_bool, require_choice, require_number, require_str

maps_bp = Blueprint('maps', __name__, url_prefix='/api')

MARKER_TYPES = ('player', 'npc', 'enemy', 'poi')


def load_map(conn, map_id):
    row = conn.execute('SELECT * FROM maps WHERE id = ?', (map_id,)).fetchone()
    if row is None:
        raise NotFound('Map not found')
    return row_to_dict(row)


def marker_to_dict(row):
    data = row_to_dict(row)
    data['visible'] = bool(data['visible'])
    return data


def fog_to_dict(row):
    data = row_to_dict(row, json_fields=('points',))
    data['revealed'] = bool(data['revealed'])
    return data


def load_marker(conn, marker_id):
    row = conn.execute('SELECT * FROM map_markers WHERE id = ?', (marker_id,)).fetchone()
    if row is None:
        raise NotFound('Marker not found')
    return marker_to_dict(row)


def load_fog(conn, fog_id):
    row = conn.execute('SELECT * FROM fog_of_war WHERE id = ?', (fog_id,)).fetchone()
    if row is None:
        raise NotFound('Fog of war layer not found')
    return fog_to_dict(row)


def list_markers(conn, map_id, include_hidden):
    if include_hidden:
        rows = conn.execute('SELECT * FROM map_markers WHERE map_id = ? ORDER BY id', (map_id,)).fetchall()
    else:
        rows = conn.execute(
            'SELECT * FROM map_markers WHERE map_id = ? AND visible = 1 ORDER BY id', (map_id,)
        ).fetchall()
    return [marker_to_dict(row) for row in rows]


def list_fog(conn, map_id):
    rows = conn.execute('SELECT * FROM fog_of_war WHERE map_id = ? ORDER BY id', (map_id,)).fetchall()
    return [fog_to_dict(row) for row in rows]


def map_detail(conn, game_map, include_hidden):
    detail = dict(game_map)
    detail['markers'] = list_markers(conn, game_map['id'], include_hidden)
    detail['fog_of_war'] = list_fog(conn, game_map['id'])
    return detail


def parse_points(data):
    points = data.get('points')
    if not isinstance(points, list) or not points:
        raise ValidationError({'points': ['Expected a non-empty list of {x, y} points']})
    parsed = []
    for point in points:
        if not isinstance(point, dict):
            raise ValidationError({'points': ['Each point needs x and y']})
        parsed.append({'x': require_number(point, 'x'), 'y': require_number(point, 'y')})
    return parsed


def parse_marker(data):
    return {
        'type': require_choice(data, 'type', MARKER_TYPES),
        'x': require_number(data, 'x'),
        'y': require_number(data, 'y'),
        'label': require_str(data, 'label', allow_empty=True, required=False),
        'color': require_str(data, 'color', required=False),
        'icon_url': require_str(data, 'icon_url', required=False),
        'visible': require_bool(data, 'visible', default=True),
    }


def insert_marker(conn, map_id, marker):
    cursor = conn.execute(
        'INSERT INTO map_markers (map_id, type, x, y, label, color, icon_url, visible) '
        'VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
        (map_id, marker['type'], marker['x'], marker['y'], marker['label'], marker['color'], marker['icon_url'],
         marker['visible'])
    )
    return cursor.lastrowid


def _campaign_for_map(conn, map_id):
    return load_campaign(conn, load_map(conn, map_id)['campaign_id'])


def _map_for_edit(conn, account, map_id):
    game_map = load_map(conn, map_id)
    ensure_manager(account, load_campaign(conn, game_map['campaign_id']))
    return game_map


# ------------------------------------------------------------
# Live topics
# ------------------------------------------------------------
def _maps_snapshot(conn, campaign_id, audience):
    rows = conn.execute('SELECT * FROM maps WHERE campaign_id = ? ORDER BY name', (campaign_id,)).fetchall()
    return [row_to_dict(row) for row in rows]


def _map_snapshot(conn, map_id, audience):
    try:
        game_map = load_map(conn, map_id)
    except NotFound:
        return None
    return map_detail(conn, game_map, include_hidden=audience == 'dm')


def _authorize_map(conn, account, map_id):
    ensure_member(account, _campaign_for_map(conn, map_id))


def _map_audience(conn, account, map_id):
    return 'dm' if can_manage(account, _campaign_for_map(conn, map_id)) else 'player'


live.register_topic('maps', _maps_snapshot, authorize_view)
live.register_topic('map', _map_snapshot, _authorize_map, audience=_map_audience)


# ------------------------------------------------------------
# Maps
# ------------------------------------------------------------
@maps_bp.route('/campaigns/<int:campaign_id>/maps', methods=['GET'])
@login_required
def list_maps(account, campaign_id):
    conn = get_db_connection()
    try:
        ensure_member(account, load_campaign(conn, campaign_id))
        return jsonify(_maps_snapshot(conn, campaign_id, None))
    finally:
        conn.close()


@maps_bp.route('/campaigns/<int:campaign_id>/maps', methods=['POST'])
@login_required
def create_map(account, campaign_id):
    data = get_json()
    name = require_str(data, 'name')
    image_url = require_str(data, 'image_url')

    conn = get_db_connection()
    try:
        ensure_manager(account, load_campaign(conn, campaign_id))
        timestamp = now()
        cursor = conn.execute(
            'INSERT INTO maps (campaign_id, name, image_url, created_at, updated_at) VALUES (?, ?, ?, ?, ?)',
            (campaign_id, name, image_url, timestamp, timestamp)
        )
        conn.commit()
        game_map = load_map(conn, cursor.lastrowid)
    finally:
        conn.close()

    live.publish('maps', campaign_id)
    return jsonify({'success': True, 'map': game_map}), 201


@maps_bp.route('/maps/<int:map_id>', methods=['GET'])
@login_required
def get_map(account, map_id):
    conn = get_db_connection()
    try:
        game_map = load_map(conn, map_id)
        campaign = load_campaign(conn, game_map['campaign_id'])
        ensure_member(account, campaign)
        return jsonify(map_detail(conn, game_map, include_hidden=can_manage(account, campaign)))
    finally:
        conn.close()


@maps_bp.route('/maps/<int:map_id>', methods=['PATCH'])
@login_required
def update_map(account, map_id):
    data = get_json()
    updates = {}
    if 'name' in data:
        updates['name'] = require_str(data, 'name')
    if 'image_url' in data:
        updates['image_url'] = require_str(data, 'image_url')

    conn = get_db_connection()
    try:
        _map_for_edit(conn, account, map_id)
        if updates:
            updates['updated_at'] = now()
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute('UPDATE maps SET %s WHERE id = ?' % assignments, tuple(updates.values()) + (map_id,))
            conn.commit()
        game_map = load_map(conn, map_id)
    finally:
        conn.close()

    live.publish('maps', game_map['campaign_id'])
    live.publish('map', map_id)
    return jsonify({'success': True, 'map': game_map})


@maps_bp.route('/maps/<int:map_id>', methods=['DELETE'])
@login_required
def delete_map(account, map_id):
    conn = get_db_connection()
    try:
        game_map = _map_for_edit(conn, account, map_id)
        conn.execute('DELETE FROM map_markers WHERE map_id = ?', (map_id,))
        conn.execute('DELETE FROM fog_of_war WHERE map_id = ?', (map_id,))
        conn.execute('DELETE FROM maps WHERE id = ?', (map_id,))
        conn.commit()
    finally:
        conn.close()

    current_app.logger.info('%s deleted map %s', account.username, map_id)
    live.publish('maps', game_map['campaign_id'])
    live.publish('map', map_id)
    return jsonify({'success': True})


# ------------------------------------------------------------
# Markers
# ------------------------------------------------------------
@maps_bp.route('/maps/<int:map_id>/markers', methods=['GET'])
@login_required
def get_markers(account, map_id):
    conn = get_db_connection()
    try:
        campaign = _campaign_for_map(conn, map_id)
        ensure_member(account, campaign)
        return jsonify(list_markers(conn, map_id, include_hidden=can_manage(account, campaign)))
    finally:
        conn.close()


@maps_bp.route('/maps/<int:map_id>/markers', methods=['POST'])
@login_required
def create_marker(account, map_id):
    marker = parse_marker(get_json())

    conn = get_db_connection()
    try:
        _map_for_edit(conn, account, map_id)
        marker_id = insert_marker(conn, map_id, marker)
        conn.commit()
        marker = load_marker(conn, marker_id)
    finally:
        conn.close()

    live.publish('map', map_id)
    return jsonify({'success': True, 'marker': marker}), 201


@maps_bp.route('/markers/<int:marker_id>', methods=['PATCH'])
@login_required
def update_marker(account, marker_id):
    data = get_json()
    updates = {}
    if 'type' in data:
        updates['type'] = require_choice(data, 'type', MARKER_TYPES)
    for field in ('x', 'y'):
        if field in data:
            updates[field] = require_number(data, field)
    for field in ('label', 'color', 'icon_url'):
        if field in data:
            updates[field] = require_str(data, field, allow_empty=True, required=False)
    if 'visible' in data:
        updates['visible'] = require_bool(data, 'visible')

    conn = get_db_connection()
    try:
        marker = load_marker(conn, marker_id)
        _map_for_edit(conn, account, marker['map_id'])
        if updates:
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute(
                'UPDATE map_markers SET %s WHERE id = ?' % assignments, tuple(updates.values()) + (marker_id,)
            )
            conn.commit()
        marker = load_marker(conn, marker_id)
    finally:
        conn.close()

    live.publish('map', marker['map_id'])
    return jsonify({'success': True, 'marker': marker})


@maps_bp.route('/markers/<int:marker_id>/position', methods=['POST'])
@login_required
def move_marker(account, marker_id):
    data = get_json()
    x = require_number(data, 'x')
    y = require_number(data, 'y')

    conn = get_db_connection()
    try:
        marker = load_marker(conn, marker_id)
        campaign = _campaign_for_map(conn, marker['map_id'])
        if not can_manage(account, campaign):
            ensure_member(account, campaign)
            # Players can only move visible party tokens
            if marker['type'] != 'player' or not marker['visible']:
                raise Unauthorized('Only the DM can move this marker')
        conn.execute('UPDATE map_markers SET x = ?, y = ? WHERE id = ?', (x, y, marker_id))
        conn.commit()
        marker = load_marker(conn, marker_id)
    finally:
        conn.close()

    live.publish('map', marker['map_id'])
    return jsonify({'success': True, 'marker': marker})


@maps_bp.route('/markers/<int:marker_id>/visibility', methods=['POST'])
@login_required
def set_marker_visibility(account, marker_id):
    data = get_json()
    visible = require_bool(data, 'visible')

    conn = get_db_connection()
    try:
        marker = load_marker(conn, marker_id)
        _map_for_edit(conn, account, marker['map_id'])
        conn.execute('UPDATE map_markers SET visible = ? WHERE id = ?', (visible, marker_id))
        conn.commit()
        marker = load_marker(conn, marker_id)
    finally:
        conn.close()

    live.publish('map', marker['map_id'])
    return jsonify({'success': True, 'marker': marker})


@maps_bp.route('/maps/<int:map_id>/markers/visibility', methods=['POST'])
@login_required
def batch_visibility(account, map_id):
    """Reveal or hide several markers of one map at once."""
    data = get_json()
    visible = require_bool(data, 'visible')
    marker_ids = data.get('marker_ids')
    if not isinstance(marker_ids, list) or not all(
            isinstance(marker_id, int) and not isinstance(marker_id, bool) for marker_id in marker_ids):
        raise ValidationError({'marker_ids': ['Expected a list of marker ids']})

    conn = get_db_connection()
    try:
        _map_for_edit(conn, account, map_id)
        updated = 0
        for marker_id in marker_ids:
            # Each marker is its own write
            cursor = conn.execute(
                'UPDATE map_markers SET visible = ? WHERE id = ? AND map_id = ?', (visible, marker_id, map_id)
            )
            conn.commit()
            updated += cursor.rowcount
    finally:
        conn.close()

    live.publish('map', map_id)
    return jsonify({'success': True, 'updated': updated})


@maps_bp.route('/markers/<int:marker_id>', methods=['DELETE'])
@login_required
def delete_marker(account, marker_id):
    conn = get_db_connection()
    try:
        marker = load_marker(conn, marker_id)
        _map_for_edit(conn, account, marker['map_id'])
        conn.execute('DELETE FROM map_markers WHERE id = ?', (marker_id,))
        conn.commit()
    finally:
        conn.close()

    live.publish('map', marker['map_id'])
    return jsonify({'success': True})


# ------------------------------------------------------------
# Fog of war
# ------------------------------------------------------------
@maps_bp.route('/maps/<int:map_id>/fog', methods=['POST'])
@login_required
def add_fog(account, map_id):
    data = get_json()
    points = parse_points(data)
    revealed = require_bool(data, 'revealed', default=False)

    conn = get_db_connection()
    try:
        _map_for_edit(conn, account, map_id)
        cursor = conn.execute(
            'INSERT INTO fog_of_war (map_id, points, revealed) VALUES (?, ?, ?)',
            (map_id, json.dumps(points), revealed)
        )
        conn.commit()
        fog = load_fog(conn, cursor.lastrowid)
    finally:
        conn.close()

    live.publish('map', map_id)
    return jsonify({'success': True, 'fog': fog}), 201


@maps_bp.route('/fog/<int:fog_id>', methods=['PATCH'])
@login_required
def update_fog(account, fog_id):
    data = get_json()
    updates = {}
    if 'points' in data:
        updates['points'] = json.dumps(parse_points(data))
    if 'revealed' in data:
        updates['revealed'] = require_bool(data, 'revealed')

    conn = get_db_connection()
    try:
        fog = load_fog(conn, fog_id)
        _map_for_edit(conn, account, fog['map_id'])
        if updates:
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute('UPDATE fog_of_war SET %s WHERE id = ?' % assignments, tuple(updates.values()) + (fog_id,))
            conn.commit()
        fog = load_fog(conn, fog_id)
    finally:
        conn.close()

    live.publish('map', fog['map_id'])
    return jsonify({'success': True, 'fog': fog})


@maps_bp.route('/fog/<int:fog_id>', methods=['DELETE'])
@login_required
def remove_fog(account, fog_id):
    conn = get_db_connection()
    try:
        fog = load_fog(conn, fog_id)
        _map_for_edit(conn, account, fog['map_id'])
        conn.execute('DELETE FROM fog_of_war WHERE id = ?', (fog_id,))
        conn.commit()
    finally:
        conn.close()

    live.publish('map', fog['map_id'])
    return jsonify({'success': True})
