"""
config.py
---------
Centralized settings for the campaign web application. Values come from the
environment so the same code runs locally and in production.
"""

import os


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'your-secret-key-change-in-production')
    ENV_NAME = os.environ.get('FLASK_ENV', 'development')

    # Cookie session only ever holds the opaque session token
    SESSION_COOKIE_SECURE = os.environ.get('FLASK_ENV') == 'production'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    DATABASE = os.environ.get('DATABASE', 'tabletop.db')
    SESSION_LIFETIME_HOURS = int(os.environ.get('SESSION_LIFETIME_HOURS', 24 * 7))

    # Demo accounts are never created in production
    SEED_DEMO_ACCOUNTS = _env_flag('SEED_DEMO_ACCOUNTS', os.environ.get('FLASK_ENV') != 'production')

    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'threading')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    LOGIN_PATH = '/login'
    LANDING_PATH = '/dashboard'

    PORT = int(os.environ.get('PORT', 5000))
