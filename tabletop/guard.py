"""
guard.py
--------
Route Guard plus the request-level helpers that hand every view an explicit
session context.

A :class:`RouteGuard` is created per navigation and starts in ``CHECKING``.
It moves exactly once, to ``AUTHORIZED`` or ``REDIRECTING``, and refuses to
render protected content in any state but ``AUTHORIZED``.
"""

import enum
import logging
from functools import wraps

from flask import current_app, g, redirect, request, session

from . import auth
from .errors import NotAuthenticated, Unauthorized
from .roles import Role, has_role

logger = logging.getLogger('tabletop.guard')

SESSION_TOKEN_KEY = 'session_token'

# Path prefix -> minimum role. Checked most privileged first.
PROTECTED_ROUTES = ['/dashboard']
DM_ROUTES = ['/dm']
ADMIN_ROUTES = ['/admin']


class GuardState(enum.Enum):
    CHECKING = 'checking'
    AUTHORIZED = 'authorized'
    REDIRECTING = 'redirecting'


class GuardStateError(RuntimeError):
    pass


def _matches(path, prefixes):
    return any(path == prefix or path.startswith(prefix + '/') for prefix in prefixes)


def required_role_for(path):
    """Return the Role a path needs, or None for public paths."""
    if _matches(path, ADMIN_ROUTES):
        return Role.ADMIN
    if _matches(path, DM_ROUTES):
        return Role.DM
    if _matches(path, PROTECTED_ROUTES):
        return Role.PLAYER
    return None


class RouteGuard:
    def __init__(self, path, required_role=Role.PLAYER, login_path='/login', landing_path='/dashboard'):
        self.path = path
        self.required_role = Role.parse(required_role)
        self.login_path = login_path
        self.landing_path = landing_path
        self.state = GuardState.CHECKING
        self.redirect_to = None

    def resolve(self, account):
        if self.state is not GuardState.CHECKING:
            raise GuardStateError('Guard for %s already resolved' % self.path)

        if account is None:
            self.state = GuardState.REDIRECTING
            self.redirect_to = self.login_path
        elif not has_role(account, self.required_role):
            logger.warning(
                "Access denied - user '%s' (role=%s) needs role '%s' for %s",
                account.username, account.role.value, self.required_role.value, self.path,
            )
            self.state = GuardState.REDIRECTING
            self.redirect_to = self.landing_path
        else:
            self.state = GuardState.AUTHORIZED
        return self.state

    @property
    def authorized(self):
        return self.state is GuardState.AUTHORIZED

    def render(self, content):
        """Return ``content()`` only once authorized."""
        if not self.authorized:
            raise GuardStateError('Refusing to render %s in state %s' % (self.path, self.state.value))
        return content()


# ------------------------------------------------------------
# Request session context
# ------------------------------------------------------------
def request_token():
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header.split(' ', 1)[1].strip()
    return session.get(SESSION_TOKEN_KEY)


def current_account():
    """Resolve (once per request) the account behind the presented token."""
    if 'account' not in g:
        token = request_token()
        g.token = token
        g.account = auth.resolve(token) if token else None
    return g.account


def login_required(view):
    """JSON views: the wrapped view receives the account as its first argument."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        account = current_account()
        if account is None:
            raise NotAuthenticated()
        return view(account, *args, **kwargs)
    return wrapped


def require_role(role):
    required = Role.parse(role)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            account = current_account()
            if account is None:
                raise NotAuthenticated()
            if not has_role(account, required):
                logger.warning(
                    "Access denied - user '%s' (role=%s) needs role '%s'",
                    account.username, account.role.value, required.value,
                )
                raise Unauthorized("Role '%s' or higher is required" % required.value)
            return view(account, *args, **kwargs)
        return wrapped
    return decorator


def guarded_page(role=None):
    """Page views: redirect unless the session holds ``role`` (default: from the route tables)."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            required = role or required_role_for(request.path) or Role.PLAYER
            guard = RouteGuard(
                request.path,
                required,
                login_path=current_app.config['LOGIN_PATH'],
                landing_path=current_app.config['LANDING_PATH'],
            )
            guard.resolve(current_account())
            if not guard.authorized:
                return redirect(guard.redirect_to)
            return guard.render(lambda: view(g.account, *args, **kwargs))
        return wrapped
    return decorator
