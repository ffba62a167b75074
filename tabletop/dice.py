"""
dice.py
-------
Dice rolling, the roll log and per-user roll statistics. Rolls made inside a
campaign are broadcast to everyone subscribed to that campaign's ``dice``
topic.
"""

import json

from flask import Blueprint, current_app, jsonify, request
from flask_socketio import emit

from . import live
from .campaigns import authorize_view, ensure_member, load_campaign
from .db import get_db_connection, now, row_to_dict
from .dnd import parse_dice, roll
from .errors import CampaignError, NotFound, Unauthorized
from .game_sessions import load_session
from .guard import login_required, require_role
from .roles import Role, has_role
from .validation import get_json, require_number, require_str

dice_bp = Blueprint('dice', __name__, url_prefix='/api')

RECENT_LIMIT = 50


def roll_to_dict(row):
    data = row_to_dict(row, json_fields=('results', 'kept'))
    if data['success'] is not None:
        data['success'] = bool(data['success'])
    return data


def recent_rolls(conn, campaign_id, limit=RECENT_LIMIT):
    rows = conn.execute(
        'SELECT * FROM dice_rolls WHERE campaign_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?',
        (campaign_id, limit)
    ).fetchall()
    return [roll_to_dict(row) for row in rows]


def roll_stats(rolls):
    """Summarise a user's roll history."""
    if not rolls:
        return {
            'total_rolls': 0,
            'total_dice': 0,
            'average_roll': 0,
            'highest_roll': 0,
            'lowest_roll': 0,
            'critical_hits': 0,
            'critical_fails': 0,
            'rolls_by_type': {},
        }

    rolls_by_type = {}
    critical_hits = critical_fails = 0
    for entry in rolls:
        rolls_by_type[entry['dice_type']] = rolls_by_type.get(entry['dice_type'], 0) + 1
        # Natural 20s and 1s only count on d20s, and only on the die that was kept
        if entry['dice_type'] == 'd20':
            kept = entry.get('kept') or entry['results']
            critical_hits += kept.count(20)
            critical_fails += kept.count(1)

    totals = [entry['total'] for entry in rolls]
    return {
        'total_rolls': len(rolls),
        'total_dice': sum(entry['dice_count'] for entry in rolls),
        'average_roll': sum(totals) / len(totals),
        'highest_roll': max(totals),
        'lowest_roll': min(totals),
        'critical_hits': critical_hits,
        'critical_fails': critical_fails,
        'rolls_by_type': rolls_by_type,
    }


def perform_roll(account, data):
    """Validate, roll, log. Returns the stored roll."""
    expression = parse_dice(require_str(data, 'dice', default='d20'))
    extra_modifier = require_number(data, 'modifier', default=0, integer=True)
    roll_type = require_str(data, 'roll_type', default='normal')
    character_name = require_str(data, 'character_name', required=False)
    purpose = require_str(data, 'purpose', allow_empty=True, required=False)
    target_dc = require_number(data, 'target_dc', required=False, integer=True, minimum=1)
    session_id = require_number(data, 'session_id', required=False, integer=True)
    campaign_id = require_number(data, 'campaign_id', required=False, integer=True)

    result = roll(expression, roll_type, extra_modifier)
    success = None if target_dc is None else result.total >= target_dc

    conn = get_db_connection()
    try:
        if session_id is not None:
            campaign_id = load_session(conn, session_id)['campaign_id']
        if campaign_id is not None:
            ensure_member(account, load_campaign(conn, campaign_id))

        cursor = conn.execute(
            'INSERT INTO dice_rolls (session_id, campaign_id, user_id, character_name, dice_type, dice_count, '
            'modifier, roll_type, results, kept, total, purpose, target_dc, success, timestamp) '
            'VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
            (session_id, campaign_id, account.id, character_name, expression.dice_type, expression.count,
             expression.modifier + extra_modifier, roll_type, json.dumps(result.results), json.dumps(result.kept),
             result.total, purpose, target_dc, success, now())
        )
        conn.commit()
        stored = roll_to_dict(conn.execute('SELECT * FROM dice_rolls WHERE id = ?', (cursor.lastrowid,)).fetchone())
    finally:
        conn.close()

    stored['username'] = account.username
    stored['natural_twenties'] = result.natural_twenties
    stored['natural_ones'] = result.natural_ones
    if campaign_id is not None:
        live.publish('dice', campaign_id)
    return stored


def _snapshot(conn, campaign_id, audience):
    return recent_rolls(conn, campaign_id)


live.register_topic('dice', _snapshot, authorize_view)


@dice_bp.route('/dice/roll', methods=['POST'])
@login_required
def roll_dice(account):
    stored = perform_roll(account, get_json())
    current_app.logger.info('%s rolled %s: %s', account.username, stored['dice_type'], stored['total'])
    return jsonify({'success': True, 'roll': stored}), 201


@dice_bp.route('/dice/rolls', methods=['GET'])
@login_required
def list_rolls(account):
    user_id = request.args.get('user_id', default=account.id, type=int)
    limit = request.args.get('limit', default=RECENT_LIMIT, type=int)
    if user_id != account.id and not has_role(account, Role.DM):
        raise Unauthorized('You can only see your own roll history')

    conn = get_db_connection()
    try:
        rows = conn.execute(
            'SELECT * FROM dice_rolls WHERE user_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?',
            (user_id, max(1, min(limit, 500)))
        ).fetchall()
        return jsonify([roll_to_dict(row) for row in rows])
    finally:
        conn.close()


@dice_bp.route('/dice/stats', methods=['GET'])
@login_required
def get_stats(account):
    user_id = request.args.get('user_id', default=account.id, type=int)
    if user_id != account.id and not has_role(account, Role.DM):
        raise Unauthorized('You can only see your own statistics')

    conn = get_db_connection()
    try:
        rows = conn.execute('SELECT * FROM dice_rolls WHERE user_id = ?', (user_id,)).fetchall()
        return jsonify(roll_stats([roll_to_dict(row) for row in rows]))
    finally:
        conn.close()


@dice_bp.route('/sessions/<int:session_id>/dice-rolls', methods=['GET'])
@login_required
def session_rolls(account, session_id):
    conn = get_db_connection()
    try:
        game_session = load_session(conn, session_id)
        ensure_member(account, load_campaign(conn, game_session['campaign_id']))
        rows = conn.execute(
            'SELECT * FROM dice_rolls WHERE session_id = ? ORDER BY timestamp DESC, id DESC', (session_id,)
        ).fetchall()
        return jsonify([roll_to_dict(row) for row in rows])
    finally:
        conn.close()


@dice_bp.route('/dice/rolls/<int:roll_id>', methods=['DELETE'])
@require_role(Role.ADMIN)
def delete_roll(account, roll_id):
    conn = get_db_connection()
    try:
        row = conn.execute('SELECT * FROM dice_rolls WHERE id = ?', (roll_id,)).fetchone()
        if row is None:
            raise NotFound('Roll not found')
        conn.execute('DELETE FROM dice_rolls WHERE id = ?', (roll_id,))
        conn.commit()
    finally:
        conn.close()

    if row['campaign_id'] is not None:
        live.publish('dice', row['campaign_id'])
    return jsonify({'success': True})


@live.socketio.on('dice_roll')
def on_dice_roll(data):
    try:
        account = live.connected_account()
        stored = perform_roll(account, data if isinstance(data, dict) else {})
    except CampaignError as error:
        emit('error', error.to_dict())
        return
    emit('roll_result', stored)
