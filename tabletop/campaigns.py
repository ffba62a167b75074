"""
campaigns.py
------------
Campaign records and their player roster.

The roster is a JSON list on the campaign row. Adding or removing a player
writes the campaign row and then the player's account row, one after the
other with no transaction around them: two DMs editing the same roster at the
same moment can lose one of the updates. That is accepted for human-paced
play and must not be papered over by assuming cross-record atomicity.
"""

import json

from flask import Blueprint, current_app, jsonify

from . import live
from .accounts import get_account
from .db import get_db_connection, now, row_to_dict
from .errors import NotFound, Unauthorized, ValidationError
from .guard import login_required, require_role
from .roles import Role, has_role
from .validation import get_json, require_number, require_str

campaigns_bp = Blueprint('campaigns', __name__, url_prefix='/api/campaigns')


def load_campaign(conn, campaign_id):
    row = conn.execute('SELECT * FROM campaigns WHERE id = ?', (campaign_id,)).fetchone()
    if row is None:
        raise NotFound('Campaign not found')
    return row_to_dict(row, json_fields=('players',))


def is_member(account, campaign):
    return (
        has_role(account, Role.ADMIN)
        or campaign['dm_id'] == account.id
        or account.id in campaign['players']
    )


def can_manage(account, campaign):
    return has_role(account, Role.ADMIN) or campaign['dm_id'] == account.id


def ensure_member(account, campaign):
    if not is_member(account, campaign):
        raise Unauthorized('You are not part of this campaign')


def ensure_manager(account, campaign):
    if not can_manage(account, campaign):
        raise Unauthorized('Only the campaign DM can do that')


def authorize_view(conn, account, campaign_id):
    ensure_member(account, load_campaign(conn, campaign_id))


def _snapshot(conn, campaign_id, audience):
    try:
        return load_campaign(conn, campaign_id)
    except NotFound:
        return None


live.register_topic('campaign', _snapshot, authorize_view)


def delete_campaign_content(conn, campaign_id):
    """Delete everything that belongs to a campaign, leaving the campaign row."""
    conn.execute(
        'DELETE FROM inventory WHERE character_id IN (SELECT id FROM characters WHERE campaign_id = ?)',
        (campaign_id,)
    )
    conn.execute('DELETE FROM characters WHERE campaign_id = ?', (campaign_id,))
    conn.execute('DELETE FROM map_markers WHERE map_id IN (SELECT id FROM maps WHERE campaign_id = ?)', (campaign_id,))
    conn.execute('DELETE FROM fog_of_war WHERE map_id IN (SELECT id FROM maps WHERE campaign_id = ?)', (campaign_id,))
    conn.execute('DELETE FROM maps WHERE campaign_id = ?', (campaign_id,))
    conn.execute(
        'DELETE FROM encounters WHERE session_id IN (SELECT id FROM game_sessions WHERE campaign_id = ?)',
        (campaign_id,)
    )
    conn.execute('DELETE FROM game_sessions WHERE campaign_id = ?', (campaign_id,))
    conn.execute('DELETE FROM dice_rolls WHERE campaign_id = ?', (campaign_id,))
    conn.execute('UPDATE accounts SET campaign_id = NULL WHERE campaign_id = ?', (campaign_id,))


@campaigns_bp.route('', methods=['GET'])
@login_required
def list_campaigns(account):
    conn = get_db_connection()
    try:
        if has_role(account, Role.ADMIN):
            rows = conn.execute('SELECT * FROM campaigns ORDER BY name').fetchall()
        elif account.role is Role.DM:
            rows = conn.execute(
                'SELECT * FROM campaigns WHERE dm_id = ? ORDER BY name', (account.id,)
            ).fetchall()
        else:
            rows = conn.execute('SELECT * FROM campaigns ORDER BY name').fetchall()
            rows = [row for row in rows if account.id in json.loads(row['players'])]
        return jsonify([row_to_dict(row, json_fields=('players',)) for row in rows])
    finally:
        conn.close()


@campaigns_bp.route('', methods=['POST'])
@require_role(Role.DM)
def create_campaign(account):
    data = get_json()
    name = require_str(data, 'name')
    description = require_str(data, 'description', allow_empty=True, default='')

    conn = get_db_connection()
    try:
        timestamp = now()
        cursor = conn.execute(
            'INSERT INTO campaigns (name, description, dm_id, players, created_at, updated_at) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            (name, description, account.id, '[]', timestamp, timestamp)
        )
        conn.commit()
        campaign = load_campaign(conn, cursor.lastrowid)
    finally:
        conn.close()

    current_app.logger.info('%s created campaign %s', account.username, campaign['id'])
    return jsonify({'success': True, 'campaign': campaign}), 201


@campaigns_bp.route('/<int:campaign_id>', methods=['GET'])
@login_required
def get_campaign(account, campaign_id):
    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        ensure_member(account, campaign)
        return jsonify(campaign)
    finally:
        conn.close()


@campaigns_bp.route('/<int:campaign_id>', methods=['PATCH'])
@login_required
def update_campaign(account, campaign_id):
    data = get_json()
    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        ensure_manager(account, campaign)

        updates = {}
        if 'name' in data:
            updates['name'] = require_str(data, 'name')
        if 'description' in data:
            updates['description'] = require_str(data, 'description', allow_empty=True)
        if 'current_session_id' in data:
            session_id = require_number(data, 'current_session_id', required=False, integer=True)
            if session_id is not None:
                found = conn.execute(
                    'SELECT id FROM game_sessions WHERE id = ? AND campaign_id = ?', (session_id, campaign_id)
                ).fetchone()
                if found is None:
                    raise ValidationError({'current_session_id': ['No such session in this campaign']})
            updates['current_session_id'] = session_id

        if updates:
            updates['updated_at'] = now()
            assignments = ', '.join('%s = ?' % column for column in updates)
            conn.execute(
                'UPDATE campaigns SET %s WHERE id = ?' % assignments,
                tuple(updates.values()) + (campaign_id,)
            )
            conn.commit()
        campaign = load_campaign(conn, campaign_id)
    finally:
        conn.close()

    live.publish('campaign', campaign_id)
    return jsonify({'success': True, 'campaign': campaign})


@campaigns_bp.route('/<int:campaign_id>/players', methods=['POST'])
@login_required
def add_player(account, campaign_id):
    data = get_json()
    player_id = require_number(data, 'player_id', integer=True)

    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        ensure_manager(account, campaign)
        get_account(conn, player_id)

        if player_id not in campaign['players']:
            conn.execute(
                'UPDATE campaigns SET players = ?, updated_at = ? WHERE id = ?',
                (json.dumps(campaign['players'] + [player_id]), now(), campaign_id)
            )
            conn.commit()
            conn.execute('UPDATE accounts SET campaign_id = ? WHERE id = ?', (campaign_id, player_id))
            conn.commit()
        campaign = load_campaign(conn, campaign_id)
    finally:
        conn.close()

    live.publish('campaign', campaign_id)
    return jsonify({'success': True, 'campaign': campaign})


@campaigns_bp.route('/<int:campaign_id>/players/<int:player_id>', methods=['DELETE'])
@login_required
def remove_player(account, campaign_id, player_id):
    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        ensure_manager(account, campaign)

        conn.execute(
            'UPDATE campaigns SET players = ?, updated_at = ? WHERE id = ?',
            (json.dumps([pid for pid in campaign['players'] if pid != player_id]), now(), campaign_id)
        )
        conn.commit()
        conn.execute(
            'UPDATE accounts SET campaign_id = NULL WHERE id = ? AND campaign_id = ?', (player_id, campaign_id)
        )
        conn.commit()
        campaign = load_campaign(conn, campaign_id)
    finally:
        conn.close()

    live.publish('campaign', campaign_id)
    return jsonify({'success': True, 'campaign': campaign})


@campaigns_bp.route('/<int:campaign_id>', methods=['DELETE'])
@login_required
def delete_campaign(account, campaign_id):
    conn = get_db_connection()
    try:
        campaign = load_campaign(conn, campaign_id)
        ensure_manager(account, campaign)
        map_ids = [row['id'] for row in conn.execute('SELECT id FROM maps WHERE campaign_id = ?', (campaign_id,))]
        character_ids = [
            row['id'] for row in conn.execute('SELECT id FROM characters WHERE campaign_id = ?', (campaign_id,))
        ]
        delete_campaign_content(conn, campaign_id)
        conn.execute('DELETE FROM campaigns WHERE id = ?', (campaign_id,))
        conn.commit()
    finally:
        conn.close()

    current_app.logger.info('%s deleted campaign %s', account.username, campaign_id)
    for topic in ('campaign', 'characters', 'maps', 'sessions', 'dice'):
        live.publish(topic, campaign_id)
    for map_id in map_ids:
        live.publish('map', map_id)
    for character_id in character_ids:
        live.publish('inventory', character_id)
    return jsonify({'success': True})
