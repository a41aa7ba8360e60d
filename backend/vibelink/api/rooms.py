from flask import Blueprint, request
from sqlalchemy import func

from vibelink import db
from vibelink.api import ok
from vibelink.errors import NotFoundError, ValidationError
from vibelink.models import ACTIVE_STATUSES, ROOM_TYPES, GameSession, Room
from vibelink.services.sessions.lifecycle import list_by_room

rooms = Blueprint('rooms', __name__)


def _get_room(room_id) -> Room:
    room = db.session.get(Room, room_id)
    if not room:
        raise NotFoundError('Room not found')
    return room


@rooms.route('', methods=['GET'])
@rooms.route('/', methods=['GET'])
def list_rooms():
    room_type = request.args.get('type')
    q = Room.query.filter_by(is_active=True)
    if room_type:
        if room_type not in ROOM_TYPES:
            raise ValidationError('Invalid room type', details={'allowed': list(ROOM_TYPES)})
        q = q.filter_by(room_type=room_type)
    items = [r.to_dict() for r in q.order_by(Room.name.asc()).all()]
    return ok({'rooms': items, 'total': len(items)})


@rooms.route('/stats/overview', methods=['GET'])
def stats_overview():
    active = GameSession.query.filter(GameSession.status.in_(ACTIVE_STATUSES)).all()
    participants = set()
    for s in active:
        participants.update(s.participant_ids or [])
    return ok({
        'total_rooms': db.session.query(func.count(Room.id)).scalar() or 0,
        'active_sessions': len(active),
        'total_participants': len(participants),
    })


@rooms.route('/<string:room_id>', methods=['GET'])
def get_room(room_id):
    return ok({'room': _get_room(room_id).to_dict()})


@rooms.route('/<string:room_id>/sessions', methods=['GET'])
def room_sessions(room_id):
    room = _get_room(room_id)
    items = [s.to_dict() for s in list_by_room(room.id, limit=50, active_only=True)]
    return ok({'sessions': items, 'total': len(items)})
