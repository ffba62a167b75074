"""
accounts.py
-----------
Credential store: usernames, salted password hashes and a role tag per
account. Callers pass in an open connection; nothing here commits on behalf of
another record.
"""

import sqlite3
from dataclasses import dataclass
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .db import now
from .errors import NotFound, ValidationError
from .roles import Role
from .validation import validate_credentials


@dataclass(frozen=True)
class AccountSummary:
    """An account without its password hash. This is all an API ever returns."""

    id: int
    username: str
    role: Role
    campaign_id: Optional[int]
    created_at: float

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            username=row['username'],
            role=Role(row['role']),
            campaign_id=row['campaign_id'],
            created_at=row['created_at'],
        )

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role.value,
            'campaign_id': self.campaign_id,
            'created_at': self.created_at,
        }


def hash_password(password):
    return generate_password_hash(password)


def verify_password(password_hash, password):
    return check_password_hash(password_hash, password)


def find_by_username(conn, username):
    """Return the raw account row (hash included) or None."""
    return conn.execute('SELECT * FROM accounts WHERE username = ?', (username,)).fetchone()


def get_account(conn, account_id):
    row = conn.execute('SELECT * FROM accounts WHERE id = ?', (account_id,)).fetchone()
    if row is None:
        raise NotFound('Account not found')
    return AccountSummary.from_row(row)


def list_accounts(conn, campaign_id=None):
    if campaign_id is None:
        rows = conn.execute('SELECT * FROM accounts ORDER BY username').fetchall()
    else:
        rows = conn.execute(
            'SELECT * FROM accounts WHERE campaign_id = ? ORDER BY username', (campaign_id,)
        ).fetchall()
    return [AccountSummary.from_row(row) for row in rows]


def create_account(conn, username, password, role=Role.PLAYER, campaign_id=None):
    validate_credentials(username, password)
    role = Role.parse(role)

    # Uniqueness is checked at lookup time; the UNIQUE constraint catches the
    # losing side of a concurrent registration.
    if find_by_username(conn, username) is not None:
        raise ValidationError({'username': ['Username already exists']})
    try:
        cursor = conn.execute(
            'INSERT INTO accounts (username, password_hash, role, campaign_id, created_at) VALUES (?, ?, ?, ?, ?)',
            (username, hash_password(password), role.value, campaign_id, now())
        )
    except sqlite3.IntegrityError:
        raise ValidationError({'username': ['Username already exists']})
    conn.commit()
    return get_account(conn, cursor.lastrowid)


def update_role(conn, account_id, role):
    role = Role.parse(role)
    get_account(conn, account_id)
    conn.execute('UPDATE accounts SET role = ? WHERE id = ?', (role.value, account_id))
    conn.commit()
    return get_account(conn, account_id)


def assign_campaign(conn, account_id, campaign_id):
    get_account(conn, account_id)
    conn.execute('UPDATE accounts SET campaign_id = ? WHERE id = ?', (campaign_id, account_id))
    conn.commit()
    return get_account(conn, account_id)


def delete_account(conn, account_id):
    get_account(conn, account_id)
    conn.execute('DELETE FROM accounts WHERE id = ?', (account_id,))
    conn.commit()
