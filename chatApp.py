import logging
import os
from datetime import datetime, timezone

from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from config import Config
from messageStore import MessageStore
from relay import RelayEngine, SocketIOTransport

logger = logging.getLogger(__name__)

db = SQLAlchemy()
migrate = Migrate()


# Registered account; the login gate hands its username to the relay
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    registered_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)


def create_app(config_object=None, **overrides):
    """Build the Flask app with its Socket.IO server and relay engine."""
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    app.config.update(overrides)

    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app, supports_credentials=True)

    # One handler per connection at a time keeps each connection's events in order
    socketio = SocketIO(app, cors_allowed_origins=app.config['CORS_ORIGINS'], async_handlers=False)

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
    store = MessageStore(app.config['MESSAGES_FILE'])
    engine = RelayEngine(
        SocketIOTransport(socketio),
        store,
        default_room=app.config['DEFAULT_ROOM'],
        enforce_membership=app.config['ENFORCE_ROOM_MEMBERSHIP'],
    )
    engine.register(socketio)
    app.extensions['relay'] = engine

    # Imported here so the route modules can import db and User from this one
    from authRoutes import register_auth_routes
    from chatRoutes import register_chat_routes
    register_auth_routes(app)
    register_chat_routes(app, engine)

    with app.app_context():
        db.create_all()
    logger.info(f"Relay ready: messages in {app.config['MESSAGES_FILE']}, uploads in {app.config['UPLOAD_FOLDER']}")

    return app
