import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `vibelink` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from vibelink import NAMESPACE, create_app, db, socketio
from vibelink.models import GameSession, Room, User


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:3000']
    LOG_LEVEL = 'INFO'
    JWT_SECRET = 'test-jwt-secret'
    REFRESH_TOKEN_SECRET = 'test-refresh-secret'
    JWT_EXPIRY_SEC = 3600
    REFRESH_TOKEN_EXPIRY_SEC = 7200
    BCRYPT_LOG_ROUNDS = 4
    RESPONSE_BASE_SCORE = 10
    DEFAULT_LEADERBOARD_LIMIT = 10
    SESSION_IDLE_TIMEOUT_SEC = 0
    MATCH_SCORER = None


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    # Requests share the fixture's app context, so drop the user Flask-Login cached on `g`
    @application.teardown_request
    def forget_request_user(exc=None):
        g.pop('_login_user', None)

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def register(client):
    """Register a user over HTTP and return (user dict, access token)."""
    def _register(username, password='password123'):
        res = client.post('/api/auth/register', json={
            'email': f'{username}@example.com',
            'username': username,
            'password': password,
        })
        assert res.status_code == 201, res.get_json()
        data = res.get_json()['data']
        return data['user'], data['token']
    return _register


def auth_header(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture()
def room(flask_app):
    r = Room(room_type='friendship', name='Test Room', description='Test Description', max_participants=8)
    db.session.add(r)
    db.session.commit()
    return r


@pytest.fixture()
def make_session(flask_app, room):
    def _make(*user_ids, **metadata):
        from vibelink.services.sessions.lifecycle import create_session
        return create_session(room.id, list(user_ids), metadata or None)
    return _make


@pytest.fixture()
def users(flask_app):
    """Three users created directly in the database."""
    created = []
    for name in ('alice', 'bob', 'cara'):
        u = User(username=name, email=f'{name}@example.com')
        u.set_password('password123')
        db.session.add(u)
        created.append(u)
    db.session.commit()
    return created


@pytest.fixture()
def sio_connect(flask_app):
    """Open Socket.IO test clients on the gateway namespace; all are closed at teardown."""
    opened = []

    def _connect(token=None):
        auth = {'token': token} if token else None
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace=NAMESPACE,
            auth=auth,
        )
        opened.append(test_client)
        return test_client

    yield _connect
    for test_client in opened:
        try:
            if test_client.is_connected(NAMESPACE):
                test_client.disconnect(namespace=NAMESPACE)
        except RuntimeError:
            pass


def session_row(session_id):
    db.session.expire_all()
    return db.session.get(GameSession, session_id)
