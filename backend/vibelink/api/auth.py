from flask import Blueprint, current_app
from flask_login import current_user, login_required

from vibelink import db
from vibelink.api import EMAIL_RE, json_body, ok
from vibelink.auth import REFRESH, generate_refresh_token, generate_token, user_from_token
from vibelink.errors import ConflictError, UnauthorizedError, ValidationError
from vibelink.models import User, utcnow

auth = Blueprint('auth', __name__)


def _token_payload(user):
    return {
        'user': user.to_dict(include_email=True),
        'token': generate_token(user),
        'refreshToken': generate_refresh_token(user),
        'expiresIn': int(current_app.config['JWT_EXPIRY_SEC']),
    }


@auth.route('/register', methods=['POST'])
def register():
    data = json_body()
    email = (data.get('email') or '').strip().lower()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    errors = []
    if not EMAIL_RE.match(email):
        errors.append({'field': 'email', 'message': 'A valid email is required'})
    if not 3 <= len(username) <= 20:
        errors.append({'field': 'username', 'message': 'Username must be 3-20 characters'})
    if len(password) < 8:
        errors.append({'field': 'password', 'message': 'Password must be at least 8 characters'})
    if errors:
        raise ValidationError(details=errors)

    if User.query.filter_by(email=email).first():
        raise ConflictError('Email already registered')
    if User.query.filter_by(username=username).first():
        raise ConflictError('Username already taken')

    user = User(email=email, username=username, avatar=data.get('avatar'), bio=data.get('bio'))
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info(f"[register] user={user.id} username={username}")
    return ok(_token_payload(user), 201)


@auth.route('/login', methods=['POST'])
def login():
    data = json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or not password:
        raise ValidationError('Email and password are required')

    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not user.check_password(password):
        raise UnauthorizedError('Invalid email or password')

    user.last_login = utcnow()
    db.session.add(user)
    db.session.commit()
    return ok(_token_payload(user))


@auth.route('/refresh', methods=['POST'])
def refresh():
    data = json_body()
    token = data.get('refreshToken')
    if not token:
        raise ValidationError('refreshToken is required')
    user = user_from_token(token, kind=REFRESH)
    return ok({'token': generate_token(user), 'expiresIn': int(current_app.config['JWT_EXPIRY_SEC'])})


@auth.route('/me', methods=['GET'])
@login_required
def me():
    return ok({'user': current_user.to_dict(include_email=True)})


@auth.route('/logout', methods=['POST'])
@login_required
def logout():
    # Tokens are stateless; the client discards them
    return ok(message='Logged out successfully')
