from flask import Blueprint, request
from flask_login import current_user, login_required

from vibelink.api import int_arg, ok
from vibelink.models import User
from vibelink.services.sessions import lifecycle, matching
from vibelink.services.sessions.leaderboard import global_leaderboard

matches = Blueprint('matches', __name__)


def _users_by_id(user_ids):
    if not user_ids:
        return {}
    return {u.id: u for u in User.query.filter(User.id.in_(user_ids)).all()}


@matches.route('/session/<string:session_id>', methods=['GET'])
def session_matches(session_id):
    found = matching.list_session_matches(session_id)
    users = _users_by_id({m.user1_id for m in found} | {m.user2_id for m in found})
    items = []
    for m in found:
        item = m.to_dict()
        item['user1_username'] = users[m.user1_id].username if m.user1_id in users else None
        item['user2_username'] = users[m.user2_id].username if m.user2_id in users else None
        items.append(item)
    return ok({'matches': items, 'total': len(items)})


@matches.route('/session/<string:session_id>/calculate', methods=['POST'])
@login_required
def calculate(session_id):
    lifecycle.require_participant(session_id, current_user.id)
    stored = matching.calculate_matches(session_id)
    return ok({'matches': [m.to_dict() for m in stored], 'total': len(stored)},
              message='Match calculation completed')


@matches.route('/user/<string:user_id>', methods=['GET'])
def user_matches(user_id):
    history = matching.user_connections(user_id, limit=int_arg('limit', 10))
    users = _users_by_id({h.other(user_id) for h in history})
    items = []
    for h in history:
        other = h.other(user_id)
        items.append({
            'matched_user_id': other,
            'username': users[other].username if other in users else None,
            'avatar': users[other].avatar if other in users else None,
            'average_score': h.average_score,
            'total_match_count': h.total_match_count,
            'last_matched_at': h.last_matched_at.isoformat() if h.last_matched_at else None,
        })
    return ok({'matches': items, 'total': len(items)})


@matches.route('/user/<string:user_id>/with/<string:other_user_id>', methods=['GET'])
def connection_with(user_id, other_user_id):
    history = matching.connection_between(user_id, other_user_id)
    if history is None:
        return ok({'connectionHistory': None, 'message': 'No match history found'})
    return ok({'connectionHistory': history.to_dict()})


@matches.route('/leaderboard', methods=['GET'])
def leaderboard():
    period = request.args.get('leaderboard_type', 'all_time')
    entries = global_leaderboard(period, limit=int_arg('limit', 100))
    return ok({'leaderboard': entries, 'total': len(entries)})
