"""Admin account management. Role changes and deletions end the account's sessions."""

from flask import Blueprint, current_app, jsonify, request

from . import accounts, auth
from .db import get_db_connection
from .guard import require_role
from .roles import Role
from .validation import get_json, require_number

users_bp = Blueprint('users', __name__, url_prefix='/api/users')


@users_bp.route('', methods=['GET'])
@require_role(Role.ADMIN)
def list_users(account):
    campaign_id = request.args.get('campaign_id', type=int)
    conn = get_db_connection()
    try:
        return jsonify([user.to_dict() for user in accounts.list_accounts(conn, campaign_id)])
    finally:
        conn.close()


@users_bp.route('', methods=['POST'])
@require_role(Role.ADMIN)
def create_user(account):
    data = get_json()
    role = Role.parse(data.get('role', Role.PLAYER.value))
    campaign_id = require_number(data, 'campaign_id', required=False, integer=True)
    created = auth.register(data.get('username'), data.get('password'), role, campaign_id)
    return jsonify({'success': True, 'account': created.to_dict()}), 201


@users_bp.route('/<int:user_id>', methods=['GET'])
@require_role(Role.ADMIN)
def get_user(account, user_id):
    conn = get_db_connection()
    try:
        return jsonify(accounts.get_account(conn, user_id).to_dict())
    finally:
        conn.close()


@users_bp.route('/<int:user_id>/role', methods=['PUT'])
@require_role(Role.ADMIN)
def update_user_role(account, user_id):
    data = get_json()
    role = Role.parse(data.get('role'))
    conn = get_db_connection()
    try:
        updated = accounts.update_role(conn, user_id, role)
        # Sessions carry the old role; make the user sign in again
        auth.invalidate_account(conn, user_id)
    finally:
        conn.close()

    current_app.logger.info('%s set role of %s to %s', account.username, updated.username, role.value)
    return jsonify({'success': True, 'account': updated.to_dict()})


@users_bp.route('/<int:user_id>/campaign', methods=['PUT'])
@require_role(Role.ADMIN)
def assign_user_campaign(account, user_id):
    data = get_json()
    campaign_id = require_number(data, 'campaign_id', required=False, integer=True)
    conn = get_db_connection()
    try:
        updated = accounts.assign_campaign(conn, user_id, campaign_id)
        auth.invalidate_account(conn, user_id)
    finally:
        conn.close()
    return jsonify({'success': True, 'account': updated.to_dict()})


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@require_role(Role.ADMIN)
def delete_user(account, user_id):
    conn = get_db_connection()
    try:
        auth.invalidate_account(conn, user_id)
        accounts.delete_account(conn, user_id)
    finally:
        conn.close()

    current_app.logger.info('%s deleted account %s', account.username, user_id)
    return jsonify({'success': True})
