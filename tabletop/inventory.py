"""
inventory.py
------------
Items carried by a character. Whoever may edit the character may edit its
inventory; whoever may view the character may view it.
"""

import json

from flask import Blueprint, jsonify

from . import live
from .characters import ensure_can_edit, ensure_can_view, load_character
from .db import get_db_connection, row_to_dict
from .errors import NotFound, ValidationError
from .guard import login_required
from .validation import get_json, require_bool, require_choice, require_number, require_str

inventory_bp = Blueprint('inventory', __name__, url_prefix='/api')

ITEM_TYPES = ('weapon', 'armor', 'potion', 'tool', 'misc')


def item_to_dict(row):
    data = row_to_dict(row, json_fields=('properties',))
    data['equipped'] = bool(data['equipped'])
    return data


def load_item(conn, item_id):
    row = conn.execute('SELECT * FROM inventory WHERE id = ?', (item_id,)).fetchone()
    if row is None:
        raise NotFound('Item not found')
    return item_to_dict(row)


def list_items(conn, character_id):
    rows = conn.execute(
        'SELECT * FROM inventory WHERE character_id = ? ORDER BY name', (character_id,)
    ).fetchall()
    return [item_to_dict(row) for row in rows]


def inventory_summary(items):
    return {
        'items': items,
        'total_weight': round(sum(item['weight'] * item['quantity'] for item in items), 2),
        'equipped': [item for item in items if item['equipped']],
    }


def _properties(data):
    value = data.get('properties')
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError({'properties': ['Expected an object']})
    return value


def parse_item(data):
    return {
        'name': require_str(data, 'name'),
        'type': require_choice(data, 'type', ITEM_TYPES),
        'quantity': require_number(data, 'quantity', default=1, integer=True, minimum=1),
        'weight': require_number(data, 'weight', default=0, minimum=0),
        'description': require_str(data, 'description', allow_empty=True, required=False),
        'properties': _properties(data),
    }


def insert_item(conn, character_id, item, equipped=False, equip_slot=None):
    cursor = conn.execute(
        'INSERT INTO inventory (character_id, name, type, quantity, weight, description, properties, equipped, '
        'equip_slot) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)',
        (character_id, item['name'], item['type'], item['quantity'], item['weight'], item['description'],
         json.dumps(item['properties']), equipped, equip_slot if equipped else None)
    )
    return cursor.lastrowid


def _authorize_view(conn, account, character_id):
    ensure_can_view(conn, account, load_character(conn, character_id))


def _snapshot(conn, character_id, audience):
    return inventory_summary(list_items(conn, character_id))


live.register_topic('inventory', _snapshot, _authorize_view)


def _item_for_edit(conn, account, item_id):
    item = load_item(conn, item_id)
    ensure_can_edit(conn, account, load_character(conn, item['character_id']))
    return item


@inventory_bp.route('/characters/<int:character_id>/inventory', methods=['GET'])
@login_required
def get_inventory(account, character_id):
    conn = get_db_connection()
    try:
        ensure_can_view(conn, account, load_character(conn, character_id))
        return jsonify(inventory_summary(list_items(conn, character_id)))
    finally:
        conn.close()


@inventory_bp.route('/characters/<int:character_id>/inventory/equipped', methods=['GET'])
@login_required
def get_equipped(account, character_id):
    conn = get_db_connection()
    try:
        ensure_can_view(conn, account, load_character(conn, character_id))
        return jsonify([item for item in list_items(conn, character_id) if item['equipped']])
    finally:
        conn.close()


@inventory_bp.route('/characters/<int:character_id>/inventory', methods=['POST'])
@login_required
def add_item(account, character_id):
    item = parse_item(get_json())

    conn = get_db_connection()
    try:
        ensure_can_edit(conn, account, load_character(conn, character_id))
        item_id = insert_item(conn, character_id, item)
        conn.commit()
        item = load_item(conn, item_id)
    finally:
        conn.close()

    live.publish('inventory', character_id)
    return jsonify({'success': True, 'item': item}), 201


@inventory_bp.route('/inventory/<int:item_id>', methods=['GET'])
@login_required
def get_item(account, item_id):
    conn = get_db_connection()
    try:
        item = load_item(conn, item_id)
        ensure_can_view(conn, account, load_character(conn, item['character_id']))
        return jsonify(item)
    finally:
        conn.close()


@inventory_bp.route('/inventory/<int:item_id>', methods=['PATCH'])
@login_required
def update_item(account, item_id):
    data = get_json()
    updates = {}
    if 'name' in data:
        updates['name'] = require_str(data, 'name')
    if 'type' in data:
        updates['type'] = require_choice(data, 'type', ITEM_TYPES)
    if 'quantity' in data:
        updates['quantity'] = require_number(data, 'quantity', integer=True, minimum=0)
    if 'weight' in data:
        updates['weight'] = require_number(data, 'weight', minimum=0)
    if 'description' in data:
        updates['description'] = require_str(data, 'description', allow_empty=True, required=False)
    if 'properties' in data:
        updates['properties'] = json.dumps(_properties(data))

    conn = get_db_connection()
    try:
        item = _item_for_edit(conn, account, item_id)
        if updates:
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute(
                'UPDATE inventory SET %s WHERE id = ?' % assignments, tuple(updates.values()) + (item_id,)
            )
            conn.commit()
        item = load_item(conn, item_id)
    finally:
        conn.close()

    live.publish('inventory', item['character_id'])
    return jsonify({'success': True, 'item': item})


@inventory_bp.route('/inventory/<int:item_id>/equip', methods=['POST'])
@login_required
def toggle_equip(account, item_id):
    data = get_json()
    equipped = require_bool(data, 'equipped')
    equip_slot = require_str(data, 'equip_slot', required=False) if equipped else None

    conn = get_db_connection()
    try:
        item = _item_for_edit(conn, account, item_id)
        conn.execute(
            'UPDATE inventory SET equipped = ?, equip_slot = ? WHERE id = ?', (equipped, equip_slot, item_id)
        )
        conn.commit()
        item = load_item(conn, item_id)
    finally:
        conn.close()

    live.publish('inventory', item['character_id'])
    return jsonify({'success': True, 'item': item})


@inventory_bp.route('/inventory/<int:item_id>/quantity', methods=['POST'])
@login_required
def update_quantity(account, item_id):
    data = get_json()
    quantity = require_number(data, 'quantity', integer=True, minimum=0)

    conn = get_db_connection()
    try:
        item = _item_for_edit(conn, account, item_id)
        if quantity == 0:
            # Used up
            conn.execute('DELETE FROM inventory WHERE id = ?', (item_id,))
            conn.commit()
            result = {'success': True, 'removed': True}
        else:
            conn.execute('UPDATE inventory SET quantity = ? WHERE id = ?', (quantity, item_id))
            conn.commit()
            result = {'success': True, 'removed': False, 'item': load_item(conn, item_id)}
    finally:
        conn.close()

    live.publish('inventory', item['character_id'])
    return jsonify(result)


@inventory_bp.route('/inventory/<int:item_id>', methods=['DELETE'])
@login_required
def remove_item(account, item_id):
    conn = get_db_connection()
    try:
        item = _item_for_edit(conn, account, item_id)
        conn.execute('DELETE FROM inventory WHERE id = ?', (item_id,))
        conn.commit()
    finally:
        conn.close()

    live.publish('inventory', item['character_id'])
    return jsonify({'success': True})
