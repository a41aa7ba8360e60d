from flask import Blueprint, current_app, jsonify

from vibelink.models import utcnow

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the VibeLink game server!'})


@main.route('/health')
def health():
    return jsonify({
        'status': 'ok',
        'timestamp': utcnow().isoformat(),
        'testing': bool(current_app.config.get('TESTING')),
    })
