"""Real-time gateway on the ``/ws`` namespace.

Connections authenticate during the handshake, join one session's broadcast
group with ``join-session``, and then send mutating events. Each event is
validated and persisted through the session services before the result is
broadcast to the group; the handler's return value is the acknowledgement
``{success, data?, error?}`` delivered to the caller's callback.

Broadcasts are fire-and-forget. A connection that joins later only
recovers state through ``get-session``.
"""

import functools
import threading
from typing import Any, Dict, Optional, Set

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from vibelink import NAMESPACE, db, socketio
from vibelink.auth import user_from_token
from vibelink.errors import ApiError, UnauthorizedError, ValidationError
from vibelink.models import utcnow
from vibelink.services.sessions import activity, lifecycle, matching


class ConnectionRegistry:
    """Which connection belongs to which user and session.

    Only this module mutates the registry.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_sid: Dict[str, Dict[str, Any]] = {}
        self._by_session: Dict[str, Set[str]] = {}

    def connect(self, sid: str, user_id: str, username: str) -> None:
        with self._lock:
            self._by_sid[sid] = {'user_id': user_id, 'username': username, 'session_id': None}

    def get(self, sid: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            ctx = self._by_sid.get(sid)
            return dict(ctx) if ctx else None

    def join(self, sid: str, session_id: str) -> Optional[str]:
        """Attach `sid` to `session_id`; returns the session it was in before, if any."""
        with self._lock:
            ctx = self._by_sid[sid]
            previous = ctx['session_id']
            if previous and previous != session_id:
                self._discard(previous, sid)
            ctx['session_id'] = session_id
            self._by_session.setdefault(session_id, set()).add(sid)
            return previous if previous != session_id else None

    def drop(self, sid: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            ctx = self._by_sid.pop(sid, None)
            if ctx and ctx['session_id']:
                self._discard(ctx['session_id'], sid)
            return ctx

    def members(self, session_id: str) -> Set[str]:
        """User ids currently connected to the session's group."""
        with self._lock:
            sids = self._by_session.get(session_id, set())
            return {self._by_sid[s]['user_id'] for s in sids if s in self._by_sid}

    def _discard(self, session_id: str, sid: str) -> None:
        sids = self._by_session.get(session_id)
        if sids is not None:
            sids.discard(sid)
            if not sids:
                self._by_session.pop(session_id, None)


registry = ConnectionRegistry()


def room_for(session_id: str) -> str:
    return f"session:{session_id}"


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def _now() -> str:
    return utcnow().isoformat()


def _identity() -> Dict[str, Any]:
    ctx = registry.get(_get_sid())
    if not ctx:
        raise UnauthorizedError('Authentication required')
    return ctx


def _session_id(data: dict) -> str:
    session_id = data.get('sessionId')
    if not isinstance(session_id, str) or not session_id:
        raise ValidationError('sessionId is required')
    return session_id


def _acked(handler):
    """Run an event handler and turn its outcome into an acknowledgement."""
    @functools.wraps(handler)
    def wrapper(data=None):
        try:
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValidationError('Event payload must be an object')
            result = handler(data)
        except ApiError as err:
            db.session.rollback()
            current_app.logger.info(f"[ws-rejected] {handler.__name__} sid={_get_sid()} {err.message}")
            return {'success': False, 'error': err.message}
        except Exception:
            db.session.rollback()
            current_app.logger.exception(f"[ws-error] {handler.__name__} sid={_get_sid()}")
            return {'success': False, 'error': 'Internal server error'}
        if result is None:
            return {'success': True}
        return {'success': True, 'data': result}
    return wrapper


# ---- Broadcasts (shared with the REST mirror) ----

def announce_game_started(session) -> None:
    socketio.emit('game-started', {'session': session.to_dict(), 'timestamp': _now()},
                  to=room_for(session.id), namespace=NAMESPACE)


def announce_round(session) -> None:
    if session.status == 'finished':
        socketio.emit('game-finished', {'sessionId': session.id, 'timestamp': _now()},
                      to=room_for(session.id), namespace=NAMESPACE)
        return
    socketio.emit('round-changed', {
        'sessionId': session.id,
        'round': session.current_round,
        'gameState': session.game_state,
        'timestamp': _now(),
    }, to=room_for(session.id), namespace=NAMESPACE)


def announce_response(session_id: str, user_id: str, username: str, round_number: int) -> None:
    # Content stays private until the reveal; only the fact of submission is shared
    socketio.emit('response-submitted', {
        'userId': user_id,
        'username': username,
        'roundNumber': round_number,
    }, to=room_for(session_id), namespace=NAMESPACE)


def announce_message(message) -> None:
    payload = message.to_dict()
    socketio.emit('new-message', {
        'id': payload['id'],
        'sender': payload['sender'],
        'message': payload['message'],
        'roundType': payload['round_type'],
        'timestamp': payload['created_at'],
    }, to=room_for(message.game_session_id), namespace=NAMESPACE)


# ---- Connection lifecycle ----

def handle_connect(auth=None):
    token = (auth or {}).get('token') if isinstance(auth, dict) else None
    token = token or request.args.get('token')
    try:
        user = user_from_token(token)
    except UnauthorizedError as err:
        current_app.logger.info(f"[ws-refused] sid={_get_sid()} {err.message}")
        raise ConnectionRefusedError(err.message)
    registry.connect(_get_sid(), user.id, user.username)
    current_app.logger.info(f"[ws-connect] user={user.username} sid={_get_sid()}")
    emit('connected', {'userId': user.id, 'username': user.username})


def handle_disconnect(reason=None):
    sid = _get_sid()
    ctx = registry.drop(sid)
    if not ctx:
        return
    current_app.logger.info(f"[ws-disconnect] user={ctx['username']} sid={sid}")
    if ctx['session_id']:
        socketio.emit('user-left', {'userId': ctx['user_id'], 'username': ctx['username']},
                      to=room_for(ctx['session_id']), namespace=NAMESPACE, skip_sid=sid)


# ---- Client events ----

@_acked
def handle_join_session(data):
    me = _identity()
    session = lifecycle.require_participant(_session_id(data), me['user_id'])
    sid = _get_sid()
    previous = registry.join(sid, session.id)
    if previous:
        leave_room(room_for(previous))
        socketio.emit('user-left', {'userId': me['user_id'], 'username': me['username']},
                      to=room_for(previous), namespace=NAMESPACE, skip_sid=sid)
    join_room(room_for(session.id))
    emit('user-joined', {'userId': me['user_id'], 'username': me['username']},
         to=room_for(session.id), include_self=False)
    return {'session': session.to_dict(), 'online': sorted(registry.members(session.id))}


@_acked
def handle_start_game(data):
    me = _identity()
    session_id = _session_id(data)
    lifecycle.require_participant(session_id, me['user_id'])
    session = lifecycle.start_session(session_id)
    announce_game_started(session)
    return {'session': session.to_dict()}


@_acked
def handle_submit_response(data):
    me = _identity()
    session_id = _session_id(data)
    round_number = data.get('roundNumber')
    response = activity.submit_response(
        session_id, me['user_id'], round_number,
        round_type=data.get('roundType'),
        response_text=data.get('responseText'),
        response_data=data.get('responseData'),
    )
    announce_response(session_id, me['user_id'], me['username'], round_number)
    return {'response': response.to_dict()}


@_acked
def handle_send_message(data):
    me = _identity()
    message = activity.post_message(
        _session_id(data), me['user_id'], data.get('message'),
        round_type=data.get('roundType'),
        is_anonymous=bool(data.get('isAnonymous')),
    )
    announce_message(message)
    return {'id': message.id}


@_acked
def handle_next_round(data):
    me = _identity()
    session_id = _session_id(data)
    lifecycle.require_participant(session_id, me['user_id'])
    if 'expectedGameState' in data:
        session = lifecycle.advance_round(session_id, expected_state=data['expectedGameState'])
    else:
        session = lifecycle.advance_round(session_id)
    announce_round(session)
    return {'session': session.to_dict()}


@_acked
def handle_vote_meme(data):
    me = _identity()
    session_id = _session_id(data)
    reaction_type = data.get('reactionType')
    meme = activity.react_to_meme(session_id, data.get('memeId'), me['user_id'], reaction_type)
    socketio.emit('meme-voted', {
        'memeId': meme.id,
        'userId': me['user_id'],
        'reactionType': reaction_type,
        'totalReactions': meme.total_reactions,
    }, to=room_for(session_id), namespace=NAMESPACE)
    return {'meme': meme.to_dict()}


@_acked
def handle_audience_vote(data):
    me = _identity()
    session_id = _session_id(data)
    category = data.get('category')
    nominee_id = data.get('nomineeId')
    total = activity.cast_audience_vote(session_id, me['user_id'], category, nominee_id)
    socketio.emit('audience-vote-recorded', {
        'category': category,
        'nomineeId': nominee_id,
        'totalVotes': total,
    }, to=room_for(session_id), namespace=NAMESPACE)
    return {'totalVotes': total}


@_acked
def handle_get_session(data):
    _identity()
    return matching.session_with_matches(_session_id(data))


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the gateway namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join-session', handle_join_session, namespace=NAMESPACE)
    socketio.on_event('start-game', handle_start_game, namespace=NAMESPACE)
    socketio.on_event('submit-response', handle_submit_response, namespace=NAMESPACE)
    socketio.on_event('send-message', handle_send_message, namespace=NAMESPACE)
    socketio.on_event('next-round', handle_next_round, namespace=NAMESPACE)
    socketio.on_event('vote-meme', handle_vote_meme, namespace=NAMESPACE)
    socketio.on_event('audience-vote', handle_audience_vote, namespace=NAMESPACE)
    socketio.on_event('get-session', handle_get_session, namespace=NAMESPACE)
