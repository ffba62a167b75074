"""
views.py
--------
Login, logout and registration (JSON and form), the current-session lookup,
the health check and the role-gated pages.
"""

from datetime import datetime

from flask import Blueprint, current_app, jsonify, redirect, render_template, request, session, url_for

from . import auth
from .db import get_db_connection
from .errors import InvalidCredentials, ValidationError
from .guard import SESSION_TOKEN_KEY, current_account, guarded_page, request_token
from .roles import Role, can_access_admin, can_access_dm, role_display_name

views_bp = Blueprint('views', __name__)


def _credentials():
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
    else:
        data = request.form
    return data.get('username'), data.get('password')


def _end_session():
    token = request_token()
    try:
        auth.invalidate(token)
    except Exception:
        # Logging out must always succeed for the client
        current_app.logger.exception('Failed to invalidate session during logout')
    session.pop(SESSION_TOKEN_KEY, None)


@views_bp.route('/health')
def health_check():
    """Health check endpoint for monitoring"""
    return jsonify({'status': 'healthy', 'timestamp': datetime.now().isoformat()}), 200


# ------------------------------------------------------------
# JSON auth API
# ------------------------------------------------------------
@views_bp.route('/api/auth/login', methods=['POST'])
def api_login():
    username, password = _credentials()
    token, account = auth.login(username, password)
    session[SESSION_TOKEN_KEY] = token
    return jsonify({'success': True, 'token': token, 'account': account.to_dict()})


@views_bp.route('/api/auth/session', methods=['GET'])
def api_session():
    account = current_account()
    return jsonify({'account': account.to_dict() if account else None})


@views_bp.route('/api/auth/logout', methods=['POST'])
def api_logout():
    _end_session()
    return jsonify({'success': True})


@views_bp.route('/api/auth/register', methods=['POST'])
def api_register():
    username, password = _credentials()
    # Self-registration only ever creates players
    account = auth.register(username, password, Role.PLAYER)
    return jsonify({'success': True, 'account': account.to_dict()}), 201


# ------------------------------------------------------------
# Pages
# ------------------------------------------------------------
@views_bp.route('/')
def index():
    return redirect(url_for('views.dashboard'))


@views_bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'GET':
        if current_account() is not None:
            return redirect(current_app.config['LANDING_PATH'])
        return render_template('login.html')

    username, password = _credentials()
    try:
        token, account = auth.login(username, password)
    except InvalidCredentials as error:
        if request.is_json:
            raise
        return render_template('login.html', error=error.message, username=username), 401

    session[SESSION_TOKEN_KEY] = token
    if request.is_json:
        return jsonify({'success': True, 'token': token, 'account': account.to_dict()})
    return redirect(current_app.config['LANDING_PATH'])


@views_bp.route('/register', methods=['POST'])
def register():
    username, password = _credentials()
    try:
        account = auth.register(username, password, Role.PLAYER)
    except ValidationError as error:
        if request.is_json:
            raise
        return render_template('login.html', error=error.message, fields=error.fields, username=username), 400

    if request.is_json:
        return jsonify({'success': True, 'account': account.to_dict()}), 201
    return redirect(url_for('views.login'))


@views_bp.route('/logout')
def logout():
    _end_session()
    return redirect(url_for('views.login'))


@views_bp.route('/dashboard')
@guarded_page()
def dashboard(account):
    conn = get_db_connection()
    try:
        rows = conn.execute(
            'SELECT id, name, level, class, hp, max_hp FROM characters WHERE user_id = ? ORDER BY name',
            (account.id,)
        ).fetchall()
    finally:
        conn.close()
    return render_template(
        'dashboard.html',
        account=account,
        role_name=role_display_name(account.role),
        characters=[dict(row) for row in rows],
        can_access_dm=can_access_dm(account),
        can_access_admin=can_access_admin(account),
    )


@views_bp.route('/dm')
@guarded_page(Role.DM)
def dm_panel(account):
    conn = get_db_connection()
    try:
        if account.role is Role.ADMIN:
            rows = conn.execute('SELECT * FROM campaigns ORDER BY name').fetchall()
        else:
            rows = conn.execute('SELECT * FROM campaigns WHERE dm_id = ? ORDER BY name', (account.id,)).fetchall()
    finally:
        conn.close()
    return render_template('dm.html', account=account, campaigns=[dict(row) for row in rows])


@views_bp.route('/admin')
@guarded_page(Role.ADMIN)
def admin_panel(account):
    conn = get_db_connection()
    try:
        rows = conn.execute('SELECT id, username, role, campaign_id FROM accounts ORDER BY username').fetchall()
    finally:
        conn.close()
    return render_template('admin.html', account=account, users=[dict(row) for row in rows])
