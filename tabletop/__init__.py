"""
tabletop
--------
Campaign manager for tabletop role-playing games: accounts with a role
hierarchy, campaigns, characters, inventories, battle maps, play sessions and
dice, with live updates over Socket.IO.
"""

import logging

from flask import Flask

from .auth import SessionCache, purge_expired
from .config import Config
from .db import init_db, init_db_command
from .errors import register_error_handlers
from .live import socketio

__version__ = '0.1.0'


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    app.extensions['session_cache'] = SessionCache()
    register_error_handlers(app)

    # Importing the route modules also registers their live topics
    from .campaigns import campaigns_bp
    from .characters import characters_bp
    from .dice import dice_bp
    from .game_sessions import sessions_bp
    from .inventory import inventory_bp
    from .maps import maps_bp
    from .transfer import transfer_bp
    from .users import users_bp
    from .views import views_bp

    for blueprint in (views_bp, campaigns_bp, characters_bp, inventory_bp, maps_bp, sessions_bp, dice_bp, users_bp,
                      transfer_bp):
        app.register_blueprint(blueprint)

    app.cli.add_command(init_db_command)
    socketio.init_app(app, cors_allowed_origins='*', async_mode=app.config['SOCKETIO_ASYNC_MODE'])

    with app.app_context():
        init_db()
        purge_expired()

    app.logger.info('Campaign manager ready (%s), database %s', app.config['ENV_NAME'], app.config['DATABASE'])
    return app
