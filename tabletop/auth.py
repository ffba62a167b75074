"""
auth.py
-------
Authenticator and Session Resolver.

``login`` verifies credentials and issues an opaque token backed by a row in
``auth_sessions``. Rows are keyed by the SHA-256 of the token, so a lookup is a
primary-key hit and the table never holds a usable token. A per-process
:class:`SessionCache` sits in front of the table and is invalidated on logout,
on expiry and whenever an account's role or existence changes.
"""

import hashlib
import re
import secrets
import threading

from flask import current_app

from . import accounts
from .db import get_db_connection, now
from .errors import InvalidCredentials
from .roles import Role

# secrets.token_urlsafe(32) always yields 43 characters of this alphabet
TOKEN_BYTES = 32
TOKEN_PATTERN = re.compile(r'^[A-Za-z0-9_-]{43}$')

_dummy_hash = None

# Callbacks run with (token_hashes, account_id) whenever sessions end
_session_end_listeners = []


def on_session_end(listener):
    _session_end_listeners.append(listener)
    return listener


def _sessions_ended(token_hashes=(), account_id=None):
    for listener in _session_end_listeners:
        listener(frozenset(token_hashes), account_id)


def _timing_hash():
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = accounts.hash_password(secrets.token_urlsafe(16))
    return _dummy_hash


def generate_token():
    return secrets.token_urlsafe(TOKEN_BYTES)


def is_well_formed(token):
    return isinstance(token, str) and TOKEN_PATTERN.match(token) is not None


def hash_token(token):
    return hashlib.sha256(token.encode('ascii')).hexdigest()


class SessionCache:
    """Token hash -> (account summary, expiry) for the lifetime of the process."""

    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, token_hash):
        with self._lock:
            entry = self._entries.get(token_hash)
            if entry is None:
                return None
            account, expires_at = entry
            if expires_at <= now():
                del self._entries[token_hash]
                return None
            return account

    def put(self, token_hash, account, expires_at):
        with self._lock:
            # Sweep on insert so abandoned sessions do not pile up
            self._sweep(now())
            self._entries[token_hash] = (account, expires_at)

    def purge(self, at):
        with self._lock:
            return self._sweep(at)

    def _sweep(self, at):
        stale = [key for key, (_, expires_at) in self._entries.items() if expires_at <= at]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def discard(self, token_hash):
        with self._lock:
            self._entries.pop(token_hash, None)

    def forget_account(self, account_id):
        with self._lock:
            stale = [key for key, (account, _) in self._entries.items() if account.id == account_id]
            for key in stale:
                del self._entries[key]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


def get_session_cache():
    return current_app.extensions['session_cache']


def _session_lifetime():
    return current_app.config['SESSION_LIFETIME_HOURS'] * 3600


def register(username, password, role=Role.PLAYER, campaign_id=None):
    conn = get_db_connection()
    try:
        account = accounts.create_account(conn, username, password, role, campaign_id)
    finally:
        conn.close()
    current_app.logger.info('Registered account %s (%s)', account.username, account.role.value)
    return account


def login(username, password):
    """Verify credentials and open a session. Returns ``(token, AccountSummary)``."""
    if not isinstance(username, str) or not isinstance(password, str):
        raise InvalidCredentials()

    conn = get_db_connection()
    try:
        row = accounts.find_by_username(conn, username)
        if row is None:
            # Same work as a real check so timing does not reveal unknown usernames
            accounts.verify_password(_timing_hash(), password)
            raise InvalidCredentials()
        if not accounts.verify_password(row['password_hash'], password):
            raise InvalidCredentials()

        account = accounts.AccountSummary.from_row(row)
        token = generate_token()
        token_hash = hash_token(token)
        created_at = now()
        expires_at = created_at + _session_lifetime()
        conn.execute(
            'INSERT INTO auth_sessions (token_hash, account_id, created_at, expires_at) VALUES (?, ?, ?, ?)',
            (token_hash, account.id, created_at, expires_at)
        )
        conn.commit()
    finally:
        conn.close()

    get_session_cache().put(token_hash, account, expires_at)
    current_app.logger.info('Login: %s', account.username)
    return token, account


def resolve(token):
    """Return the AccountSummary behind ``token``, or None."""
    if not is_well_formed(token):
        return None

    token_hash = hash_token(token)
    cache = get_session_cache()
    account = cache.get(token_hash)
    if account is not None:
        return account

    conn = get_db_connection()
    try:
        row = conn.execute(
            'SELECT s.expires_at, a.* FROM auth_sessions s JOIN accounts a ON a.id = s.account_id '
            'WHERE s.token_hash = ?',
            (token_hash,)
        ).fetchone()
        if row is None:
            return None
        if row['expires_at'] <= now():
            conn.execute('DELETE FROM auth_sessions WHERE token_hash = ?', (token_hash,))
            conn.commit()
            return None
        account = accounts.AccountSummary.from_row(row)
    finally:
        conn.close()

    cache.put(token_hash, account, row['expires_at'])
    return account


def invalidate(token):
    """End the session behind ``token``. Always reports success."""
    if not is_well_formed(token):
        return True

    token_hash = hash_token(token)
    get_session_cache().discard(token_hash)
    conn = get_db_connection()
    try:
        conn.execute('DELETE FROM auth_sessions WHERE token_hash = ?', (token_hash,))
        conn.commit()
    finally:
        conn.close()
    _sessions_ended([token_hash])
    return True


def invalidate_account(conn, account_id):
    """Drop every session of an account, e.g. after a role change or deletion."""
    conn.execute('DELETE FROM auth_sessions WHERE account_id = ?', (account_id,))
    conn.commit()
    get_session_cache().forget_account(account_id)
    _sessions_ended(account_id=account_id)


def purge_expired():
    """Delete expired sessions from the table and the cache."""
    at = now()
    conn = get_db_connection()
    try:
        rows = conn.execute('SELECT token_hash FROM auth_sessions WHERE expires_at <= ?', (at,)).fetchall()
        conn.execute('DELETE FROM auth_sessions WHERE expires_at <= ?', (at,))
        conn.commit()
    finally:
        conn.close()
    evicted = get_session_cache().purge(at)
    if rows:
        _sessions_ended(row['token_hash'] for row in rows)
        current_app.logger.info('Purged %d expired sessions', len(rows))
    if evicted:
        current_app.logger.debug('Evicted %d expired cache entries', evicted)
    return len(rows)
