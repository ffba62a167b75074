"""
roles.py
--------
Closed role enumeration and the hierarchy check used everywhere a permission
is decided.

Role hierarchy: ``admin`` > ``dm`` > ``player``. A higher role satisfies any
lower role's check.
"""

import enum

from .errors import ValidationError


class Role(enum.Enum):
    PLAYER = 'player'
    DM = 'dm'
    ADMIN = 'admin'

    @property
    def rank(self):
        return _RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value, field='role'):
        """Return the Role for ``value``; anything but the three tags is invalid."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError({field: ['Role must be one of: player, dm, admin']})


_RANK = {Role.PLAYER: 0, Role.DM: 1, Role.ADMIN: 2}

ROLE_NAMES = {
    Role.PLAYER: 'Player',
    Role.DM: 'Dungeon Master',
    Role.ADMIN: 'Administrator',
}


def has_role(account, required_role):
    """Return True if ``account`` holds ``required_role`` or a higher role."""
    if account is None:
        return False
    return account.role >= Role.parse(required_role)


def can_access_dm(account):
    return has_role(account, Role.DM)


def can_access_admin(account):
    return has_role(account, Role.ADMIN)


def role_display_name(role):
    return ROLE_NAMES[Role.parse(role)]
