"""
live.py
-------
Live subscriptions over Flask-SocketIO.

A client connects with its session token, then emits ``subscribe`` with
``{'topic': ..., 'id': ...}``: a campaign id, a map id for ``map`` or a
character id for ``inventory``. It gets a full ``snapshot`` straight away and
another one after every mutation touching that topic. Snapshots are
replacements, never deltas.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from flask import request, session
from flask_socketio import SocketIO, emit, join_room, leave_room

from . import auth
from .db import get_db_connection
from .errors import CampaignError, NotAuthenticated, ValidationError
from .guard import SESSION_TOKEN_KEY
from .roles import Role, has_role

logger = logging.getLogger('tabletop.live')

socketio = SocketIO()

AUDIENCES = ('player', 'dm')

# sid -> (token, token hash, account id) presented at connect. The token is
# re-resolved on every subscribe, and sockets are dropped as soon as their
# session ends.
_connections = {}


@dataclass
class Topic:
    name: str
    # (conn, id, audience) -> JSON-serialisable snapshot
    load: Callable
    # (conn, account, id) -> None; raises NotFound / Unauthorized
    authorize: Callable
    # (conn, account, id) -> audience; defaults to the account role
    audience: Optional[Callable] = None


_topics = {}


def register_topic(name, load, authorize, audience=None):
    _topics[name] = Topic(name, load, authorize, audience)


def audience_for(account):
    return 'dm' if has_role(account, Role.DM) else 'player'


def room_name(topic, key, audience):
    return '%s:%s:%s' % (topic, key, audience)


def _snapshot(topic, key, data):
    return {'topic': topic, 'id': key, 'data': data}


def publish(topic, key):
    """Push a fresh snapshot of ``topic``/``key`` to every subscriber."""
    registered = _topics[topic]
    conn = get_db_connection()
    try:
        payloads = {audience: registered.load(conn, key, audience) for audience in AUDIENCES}
    finally:
        conn.close()
    for audience, data in payloads.items():
        socketio.emit('snapshot', _snapshot(topic, key, data), to=room_name(topic, key, audience))


def _parse_subscription(data):
    if not isinstance(data, dict):
        raise ValidationError({'body': ['Expected an object']})
    topic = data.get('topic')
    if topic not in _topics:
        raise ValidationError({'topic': ['Unknown topic']})
    key = data.get('id')
    if isinstance(key, bool) or not isinstance(key, int):
        raise ValidationError({'id': ['Must be an integer id']})
    return topic, key


def connected_account():
    token, _, _ = _connections.get(request.sid, (None, None, None))
    account = auth.resolve(token) if token else None
    if account is None:
        raise NotAuthenticated()
    return account


@socketio.on('connect')
def on_connect(auth_payload=None):
    token = None
    if isinstance(auth_payload, dict):
        token = auth_payload.get('token')
    token = token or session.get(SESSION_TOKEN_KEY)
    account = auth.resolve(token) if token else None
    if account is None:
        # Reject the connection
        return False
    _connections[request.sid] = (token, auth.hash_token(token), account.id)
    logger.info('%s connected (%s)', account.username, request.sid)


@socketio.on('disconnect')
def on_disconnect(*args):
    # Rooms are left by the server on disconnect
    _connections.pop(request.sid, None)


@auth.on_session_end
def drop_sockets(token_hashes, account_id):
    """Disconnect every socket opened with an ended session or account."""
    stale = [
        sid for sid, (_, token_hash, owner) in list(_connections.items())
        if token_hash in token_hashes or (account_id is not None and owner == account_id)
    ]
    for sid in stale:
        _connections.pop(sid, None)
        socketio.server.disconnect(sid, namespace='/')
    if stale:
        logger.info('Dropped %d sockets after their session ended', len(stale))


@socketio.on('subscribe')
def on_subscribe(data):
    try:
        account = connected_account()
        topic, key = _parse_subscription(data)
        registered = _topics[topic]
        conn = get_db_connection()
        try:
            registered.authorize(conn, account, key)
            audience = registered.audience(conn, account, key) if registered.audience else audience_for(account)
            snapshot = registered.load(conn, key, audience)
        finally:
            conn.close()
    except CampaignError as error:
        emit('error', error.to_dict())
        return

    join_room(room_name(topic, key, audience))
    emit('snapshot', _snapshot(topic, key, snapshot))


@socketio.on('unsubscribe')
def on_unsubscribe(data):
    try:
        topic, key = _parse_subscription(data)
    except ValidationError as error:
        emit('error', error.to_dict())
        return
    for audience in AUDIENCES:
        leave_room(room_name(topic, key, audience))
