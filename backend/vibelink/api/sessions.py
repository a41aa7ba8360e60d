from flask import Blueprint, current_app
from flask_login import current_user, login_required

from vibelink.api import int_arg, json_body, ok
from vibelink.errors import ValidationError
from vibelink.services.sessions import activity, lifecycle
from vibelink.services.sessions.leaderboard import session_leaderboard
from vibelink import socketio_events as gateway

sessions = Blueprint('sessions', __name__)

# Request body keys -> session columns accepted by PATCH
PATCH_FIELDS = {'status': 'status', 'gameState': 'game_state', 'currentRound': 'current_round', 'metadata': 'metadata'}


@sessions.route('', methods=['POST'])
@sessions.route('/', methods=['POST'])
@login_required
def create_session():
    data = json_body()
    room_id = data.get('roomId')
    participant_ids = data.get('participantIds')
    metadata = data.get('metadata') or {}
    if not isinstance(room_id, str) or not room_id:
        raise ValidationError('roomId is required')
    if (not isinstance(participant_ids, list) or not participant_ids
            or not all(isinstance(p, str) and p for p in participant_ids)):
        raise ValidationError('participantIds must be a non-empty list of user ids')
    if not isinstance(metadata, dict):
        raise ValidationError('metadata must be an object')

    metadata = dict(metadata, created_by=current_user.id)
    session = lifecycle.create_session(room_id, participant_ids, metadata)
    return ok({'session': session.to_dict()}, 201)


@sessions.route('/active', methods=['GET'])
def active_sessions():
    items = [s.to_dict() for s in lifecycle.list_active(limit=int_arg('limit', 50))]
    return ok({'sessions': items, 'total': len(items)})


@sessions.route('/user/<string:user_id>/history', methods=['GET'])
def user_history(user_id):
    items = [s.to_dict() for s in lifecycle.list_by_user(user_id, limit=int_arg('limit', 20))]
    return ok({'sessions': items, 'total': len(items)})


@sessions.route('/<string:session_id>', methods=['GET'])
def get_session(session_id):
    return ok({'session': lifecycle.get_session(session_id).to_dict()})


@sessions.route('/<string:session_id>', methods=['PATCH'])
@login_required
def update_session(session_id):
    lifecycle.require_participant(session_id, current_user.id)
    data = json_body()
    fields = {column: data[key] for key, column in PATCH_FIELDS.items() if key in data}
    session = lifecycle.update_session(session_id, fields)
    return ok({'session': session.to_dict()})


@sessions.route('/<string:session_id>/start', methods=['POST'])
@login_required
def start_session(session_id):
    lifecycle.require_participant(session_id, current_user.id)
    session = lifecycle.start_session(session_id)
    gateway.announce_game_started(session)
    return ok({'session': session.to_dict()})


@sessions.route('/<string:session_id>/advance', methods=['POST'])
@login_required
def advance_round(session_id):
    lifecycle.require_participant(session_id, current_user.id)
    data = json_body()
    if 'expectedGameState' in data:
        session = lifecycle.advance_round(session_id, expected_state=data['expectedGameState'])
    else:
        session = lifecycle.advance_round(session_id)
    gateway.announce_round(session)
    return ok({'session': session.to_dict()})


@sessions.route('/<string:session_id>/end', methods=['POST'])
@login_required
def end_session(session_id):
    lifecycle.require_participant(session_id, current_user.id)
    session = lifecycle.end_session(session_id)
    gateway.announce_round(session)
    return ok({'session': session.to_dict()})


@sessions.route('/<string:session_id>/leaderboard', methods=['GET'])
def leaderboard(session_id):
    default = int(current_app.config.get('DEFAULT_LEADERBOARD_LIMIT', 10))
    entries = session_leaderboard(session_id, limit=int_arg('limit', default))
    return ok({'leaderboard': entries, 'total': len(entries)})


@sessions.route('/<string:session_id>/responses', methods=['POST'])
@login_required
def submit_response(session_id):
    lifecycle.require_participant(session_id, current_user.id)
    data = json_body()
    round_number = data.get('roundNumber')
    round_type = data.get('roundType')
    if isinstance(round_number, bool) or not isinstance(round_number, int) or round_number < 1:
        raise ValidationError('roundNumber must be a positive integer')
    if not isinstance(round_type, str) or not round_type:
        raise ValidationError('roundType is required')
    response_text = data.get('responseText')
    if response_text is not None and not isinstance(response_text, str):
        raise ValidationError('responseText must be a string')

    response = activity.submit_response(
        session_id, current_user.id, round_number,
        round_type=round_type,
        response_text=response_text,
        response_data=data.get('responseData'),
    )
    gateway.announce_response(session_id, current_user.id, current_user.username, round_number)
    return ok({'response': response.to_dict()}, 201)


@sessions.route('/<string:session_id>/messages', methods=['GET'])
def list_messages(session_id):
    items = [m.to_dict() for m in activity.list_messages(session_id, limit=int_arg('limit', 100, maximum=500))]
    return ok({'messages': items, 'total': len(items)})


@sessions.route('/<string:session_id>/messages', methods=['POST'])
@login_required
def post_message(session_id):
    data = json_body()
    message = activity.post_message(
        session_id, current_user.id, data.get('message'),
        round_type=data.get('roundType'),
        is_anonymous=bool(data.get('isAnonymous')),
    )
    gateway.announce_message(message)
    return ok({'message': message.to_dict()}, 201)


@sessions.route('/<string:session_id>/memes', methods=['GET'])
def list_memes(session_id):
    items = [m.to_dict() for m in activity.list_memes(session_id)]
    return ok({'memes': items, 'total': len(items)})


@sessions.route('/<string:session_id>/memes', methods=['POST'])
@login_required
def upload_meme(session_id):
    data = json_body()
    meme = activity.upload_meme(
        session_id, current_user.id, data.get('memeUrl'), data.get('caption'),
        template_id=data.get('templateId'),
    )
    return ok({'meme': meme.to_dict()}, 201)


@sessions.route('/<string:session_id>/votes', methods=['GET'])
def audience_votes(session_id):
    return ok({'votes': activity.audience_tally(session_id)})
