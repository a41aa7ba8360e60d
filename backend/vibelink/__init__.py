from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from vibelink.config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

NAMESPACE = '/ws'


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    origins = flask_app.config.get('CORS_ORIGINS') or []
    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from vibelink.errors import register_error_handlers
    register_error_handlers(flask_app)

    from vibelink.auth import register_login_loader
    register_login_loader(login_manager)

    from vibelink.main import main
    flask_app.register_blueprint(main)

    from vibelink.api.auth import auth
    flask_app.register_blueprint(auth, url_prefix='/api/auth')

    from vibelink.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from vibelink.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from vibelink.api.matches import matches
    flask_app.register_blueprint(matches, url_prefix='/api/matches')

    from vibelink.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from vibelink.models import User, Room, ROOM_TYPES
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            for u in ['testuser1', 'testuser2', 'testuser3']:
                user = User(username=u, email=f'{u}@example.com')
                user.set_password('password123')
                db.session.add(user)
            for room_type in ROOM_TYPES:
                name = room_type.replace('-', ' ').title()
                db.session.add(Room(room_type=room_type, name=name, description=f'{name} room'))

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('expire-idle-sessions')
    @click.option('--max-idle', type=int, default=None, help='Seconds of inactivity before cancelling.')
    def expire_idle_sessions_command(max_idle):
        """Cancels in-progress sessions with no recent activity."""
        from vibelink.services.sessions.lifecycle import expire_idle_sessions
        limit = max_idle if max_idle is not None else flask_app.config.get('SESSION_IDLE_TIMEOUT_SEC', 0)
        if not limit:
            print('Idle timeout disabled; nothing to do.')
            return
        with flask_app.app_context():
            expired = expire_idle_sessions(limit)
            print(f'Cancelled {len(expired)} idle session(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(expire_idle_sessions_command)

    return flask_app
