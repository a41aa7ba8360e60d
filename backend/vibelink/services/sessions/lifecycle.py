"""Session lifecycle: the only code that writes `game_sessions` rows."""

from datetime import timedelta
from typing import Iterable, List, Optional

from flask import current_app

from vibelink import db
from vibelink.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from vibelink.models import ACTIVE_STATUSES, ENDED_STATUSES, SESSION_STATUSES, GameSession, Room, utcnow
from .rounds import FIRST_ROUND, Round, next_round, round_at


UPDATABLE_FIELDS = ('status', 'game_state', 'current_round', 'started_at', 'ended_at', 'metadata')
UNSET = object()


def get_session(session_id) -> GameSession:
    session = db.session.get(GameSession, session_id) if session_id else None
    if not session:
        raise NotFoundError('Game session not found')
    return session


def require_participant(session_id, user_id) -> GameSession:
    session = get_session(session_id)
    if not session.has_participant(user_id):
        raise ForbiddenError('You are not participating in this session')
    return session


def create_session(room_id, participant_ids: Iterable[str], metadata: Optional[dict] = None) -> GameSession:
    if not room_id or not db.session.get(Room, room_id):
        raise NotFoundError('Room not found')
    participants = []
    for pid in participant_ids or []:
        if pid not in participants:
            participants.append(pid)
    session = GameSession(
        room_id=room_id,
        status='waiting',
        current_round=0,
        game_state=None,
        participant_ids=participants,
        meta=dict(metadata or {}),
    )
    db.session.add(session)
    db.session.commit()
    current_app.logger.info(f"[create] session={session.id} room={room_id} participants={len(participants)}")
    return session


def _coerce_round_fields(fields: dict) -> None:
    """Keep `current_round` equal to the position of `game_state`."""
    if 'game_state' in fields:
        label = Round.parse(fields['game_state'])
        if label is None:
            raise ValidationError('Unknown round', details={'game_state': fields['game_state']})
        if 'current_round' in fields and fields['current_round'] != label.position:
            raise ValidationError('current_round does not match game_state',
                                  details={'game_state': label.value, 'current_round': fields['current_round']})
        fields['game_state'] = label.value
        fields['current_round'] = label.position
    elif 'current_round' in fields:
        label = round_at(fields['current_round'])
        if label is None:
            raise ValidationError('current_round is out of range', details={'current_round': fields['current_round']})
        fields['game_state'] = label.value


def update_session(session_id, fields: dict) -> GameSession:
    """Apply only the supplied fields; an empty field set is a plain read."""
    session = get_session(session_id)
    fields = {k: v for k, v in (fields or {}).items() if k in UPDATABLE_FIELDS}
    if not fields:
        return session
    if 'status' in fields and fields['status'] not in SESSION_STATUSES:
        raise ValidationError('Invalid status', details={'status': fields['status']})
    # An ended session stays ended
    if session.status in ENDED_STATUSES and fields.get('status', session.status) not in ENDED_STATUSES:
        raise ConflictError(f'Session is already {session.status}')
    if 'current_round' in fields:
        value = fields['current_round']
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError('current_round must be a non-negative integer')
    _coerce_round_fields(fields)
    now = utcnow()
    if fields.get('status') == 'in_progress':
        if fields.get('game_state', session.game_state) is None:
            fields['game_state'] = FIRST_ROUND.value
            fields['current_round'] = FIRST_ROUND.position
        if session.started_at is None and 'started_at' not in fields:
            fields['started_at'] = now
    if fields.get('status') in ENDED_STATUSES and 'ended_at' not in fields and session.ended_at is None:
        fields['ended_at'] = now
    if 'metadata' in fields:
        if not isinstance(fields['metadata'], dict):
            raise ValidationError('metadata must be an object')
        session.meta = dict(fields.pop('metadata'))
    for key, value in fields.items():
        setattr(session, key, value)
    session.updated_at = now
    db.session.add(session)
    db.session.commit()
    return session


def _compare_and_set(session_id, status: str, game_state: Optional[str], values: dict) -> bool:
    """Write `values` only if status and round label still hold what the caller read."""
    state_match = (GameSession.game_state.is_(None) if game_state is None
                   else GameSession.game_state == game_state)
    values = dict(values, updated_at=utcnow())
    changed = (GameSession.query
               .filter(GameSession.id == session_id,
                       GameSession.status == status,
                       state_match)
               .update(values, synchronize_session=False))
    db.session.commit()
    return changed == 1


def start_session(session_id) -> GameSession:
    session = get_session(session_id)
    status, game_state, started_at = session.status, session.game_state, session.started_at
    if status != 'waiting':
        raise ConflictError('Game has already started or is finished')
    ok = _compare_and_set(session_id, status, game_state, {
        'status': 'in_progress',
        'game_state': FIRST_ROUND.value,
        'current_round': FIRST_ROUND.position,
        'started_at': started_at or utcnow(),
    })
    if not ok:
        raise ConflictError('Game has already started')
    current_app.logger.info(f"[start] session={session_id} round={FIRST_ROUND.value}")
    return get_session(session_id)


def advance_round(session_id, expected_state=UNSET) -> GameSession:
    """Move the session to its next round, or finish it after the last one.

    The write is a compare-and-swap on (status, game_state): of two callers
    that read the same round only one lands, the other gets ConflictError.
    `expected_state` lets a caller pin the round it believes is current.
    """
    session = get_session(session_id)
    status, previous, started_at = session.status, session.game_state, session.started_at
    if status in ENDED_STATUSES:
        raise ConflictError(f'Session is already {status}')
    if expected_state is not UNSET and (expected_state or None) != previous:
        raise ConflictError('Round already advanced',
                            details={'game_state': previous, 'current_round': session.current_round})

    upcoming = next_round(previous)
    now = utcnow()
    if upcoming is None:
        values = {'status': 'finished', 'ended_at': now}
    else:
        values = {
            'status': 'in_progress',
            'game_state': upcoming.value,
            'current_round': upcoming.position,
            'started_at': started_at or now,
        }
    if not _compare_and_set(session_id, status, previous, values):
        current = get_session(session_id)
        current_app.logger.info(f"[advance-conflict] session={session_id} read={previous} now={current.game_state}")
        raise ConflictError('Round already advanced',
                            details={'game_state': current.game_state, 'current_round': current.current_round})

    if upcoming is None:
        current_app.logger.info(f"[finish] session={session_id} finished after round={previous}")
    else:
        current_app.logger.info(f"[advance] session={session_id} {previous} -> {upcoming.value}")
    return get_session(session_id)


def end_session(session_id) -> GameSession:
    session = get_session(session_id)
    session.status = 'finished'
    session.ended_at = utcnow()
    session.updated_at = session.ended_at
    db.session.add(session)
    db.session.commit()
    current_app.logger.info(f"[end] session={session_id} forced finish")
    return session


def touch_session(session: GameSession) -> None:
    """Record activity on the session without changing its state."""
    session.updated_at = utcnow()
    db.session.add(session)


def list_active(limit: int = 50) -> List[GameSession]:
    return (GameSession.query
            .filter(GameSession.status.in_(ACTIVE_STATUSES))
            .order_by(GameSession.created_at.desc())
            .limit(limit)
            .all())


def list_by_room(room_id, limit: int = 10, active_only: bool = False) -> List[GameSession]:
    q = GameSession.query.filter_by(room_id=room_id)
    if active_only:
        q = q.filter(GameSession.status.in_(ACTIVE_STATUSES))
    return q.order_by(GameSession.created_at.desc()).limit(limit).all()


def list_by_user(user_id, limit: int = 20) -> List[GameSession]:
    # participant_ids is a JSON list; filter in Python to stay portable across backends
    result = []
    for session in GameSession.query.order_by(GameSession.created_at.desc()):
        if session.has_participant(user_id):
            result.append(session)
            if len(result) >= limit:
                break
    return result


def expire_idle_sessions(max_idle_sec: int, now=None) -> List[GameSession]:
    """Cancel in-progress sessions with no activity for `max_idle_sec` seconds."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=max_idle_sec)
    stale = (GameSession.query
             .filter(GameSession.status == 'in_progress', GameSession.updated_at < cutoff)
             .all())
    for session in stale:
        current_app.logger.info(f"[expire] session={session.id} idle since {session.updated_at}")
        session.status = 'cancelled'
        session.ended_at = now
        session.updated_at = now
        db.session.add(session)
    db.session.commit()
    return stale
