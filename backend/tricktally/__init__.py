import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from tricktally.routes import main
    flask_app.register_blueprint(main)

    from tricktally.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Register Socket.IO event handlers
    from tricktally.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    @click.option('--seed', multiple=True, help='Player name to seed (repeatable).')
    def db_reset_command(seed):
        """Drops, recreates, and seeds the player registry."""
        from tricktally.models import Player
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            names = list(seed) or ['Anne Bonny', 'Barbe Noire', 'Calico Jack']
            for name in names:
                db.session.add(Player(name=name))

            db.session.commit()
            click.echo(f'Database has been reset and seeded with {len(names)} players!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
