"""Bearer tokens and request identity.

Access and refresh tokens are HS256 JWTs. Flask-Login resolves the
``Authorization: Bearer`` header to a ``User`` on every REST request; the
socket gateway calls :func:`user_from_token` during the handshake.
"""

import time
from typing import Optional

import jwt
from flask import current_app, request

from vibelink.errors import UnauthorizedError


ACCESS = 'access'
REFRESH = 'refresh'


def _secret(kind: str) -> str:
    cfg = current_app.config
    return cfg['REFRESH_TOKEN_SECRET'] if kind == REFRESH else cfg['JWT_SECRET']


def _issue(user, kind: str, ttl: int) -> str:
    now = int(time.time())
    payload = {'sub': user.id, 'type': kind, 'iat': now, 'exp': now + ttl}
    if kind == ACCESS:
        payload['username'] = user.username
        payload['email'] = user.email
    return jwt.encode(payload, _secret(kind), algorithm='HS256')


def generate_token(user) -> str:
    return _issue(user, ACCESS, int(current_app.config['JWT_EXPIRY_SEC']))


def generate_refresh_token(user) -> str:
    return _issue(user, REFRESH, int(current_app.config['REFRESH_TOKEN_EXPIRY_SEC']))


def decode_token(token: str, kind: str = ACCESS) -> dict:
    """Verify a token and return its claims, raising UnauthorizedError."""
    if not token:
        raise UnauthorizedError('Authentication failed')
    try:
        claims = jwt.decode(token, _secret(kind), algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError('Token expired')
    except jwt.PyJWTError:
        raise UnauthorizedError('Invalid token')
    if claims.get('type') != kind:
        raise UnauthorizedError('Invalid token')
    return claims


def user_from_token(token: str, kind: str = ACCESS):
    from vibelink import db
    from vibelink.models import User

    claims = decode_token(token, kind)
    user = db.session.get(User, claims['sub'])
    if not user or not user.is_active:
        raise UnauthorizedError('User not found')
    return user


def bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip()
    return None


def register_login_loader(login_manager) -> None:
    @login_manager.user_loader
    def load_user(user_id):
        from vibelink import db
        from vibelink.models import User
        return db.session.get(User, user_id)

    @login_manager.request_loader
    def load_user_from_request(req):
        token = bearer_token()
        if not token:
            return None
        try:
            return user_from_token(token)
        except UnauthorizedError:
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        raise UnauthorizedError('Authentication required')
