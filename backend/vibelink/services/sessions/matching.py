"""Match records and connection history.

The compatibility formula is pluggable. A scorer is any callable taking the
session and the list of its round responses and returning an iterable of
dicts with keys ``user1_id``, ``user2_id``, ``connection_score`` and
optionally ``compatibility_breakdown``, ``match_strength`` and ``match_tags``.
Configure one with ``MATCH_SCORER = "package.module:function"``.
"""

import importlib
from typing import Callable, Iterable, List, Optional

from flask import current_app
from sqlalchemy import and_, or_

from vibelink import db
from vibelink.errors import ValidationError
from vibelink.models import ConnectionHistory, Match, RoundResponse, ordered_pair, utcnow
from .lifecycle import get_session


def no_matches(session, responses) -> Iterable[dict]:
    """Default scorer: no compatibility formula is defined, so nothing is produced."""
    return []


def load_scorer(path: Optional[str]) -> Callable:
    if not path:
        return no_matches
    module_name, _, attr = path.partition(':')
    return getattr(importlib.import_module(module_name), attr)


def list_session_matches(session_id) -> List[Match]:
    session = get_session(session_id)
    return (Match.query
            .filter_by(game_session_id=session.id)
            .order_by(Match.connection_score.desc())
            .all())


def session_with_matches(session_id) -> dict:
    session = get_session(session_id)
    payload = session.to_dict()
    payload['matches'] = [m.to_dict() for m in list_session_matches(session.id)]
    return payload


def _record_connection(user1_id, user2_id, score: int, now) -> None:
    history = ConnectionHistory.query.filter_by(user1_id=user1_id, user2_id=user2_id).first()
    if history is None:
        history = ConnectionHistory(user1_id=user1_id, user2_id=user2_id, total_match_count=0, average_score=0)
    count = history.total_match_count or 0
    history.average_score = round(((history.average_score or 0) * count + score) / (count + 1))
    history.total_match_count = count + 1
    history.last_matched_at = now
    db.session.add(history)


def calculate_matches(session_id, scorer: Optional[Callable] = None) -> List[Match]:
    """Score every participant pair of a session and store the results.

    Recalculating replaces the session's earlier match for the same pair;
    connection history only counts a pair the first time it matches in a session.
    """
    session = get_session(session_id)
    scorer = scorer or load_scorer(current_app.config.get('MATCH_SCORER'))
    responses = RoundResponse.query.filter_by(game_session_id=session.id).all()
    now = utcnow()
    stored = []
    for result in scorer(session, responses) or []:
        a, b = result.get('user1_id'), result.get('user2_id')
        if not a or not b or a == b:
            raise ValidationError('Scorer returned an invalid pair', details={'pair': [a, b]})
        if not (session.has_participant(a) and session.has_participant(b)):
            raise ValidationError('Scorer returned a non-participant', details={'pair': [a, b]})
        user1_id, user2_id = ordered_pair(a, b)
        score = int(result.get('connection_score') or 0)
        match = Match.query.filter_by(game_session_id=session.id, user1_id=user1_id, user2_id=user2_id).first()
        if match is None:
            match = Match(game_session_id=session.id, user1_id=user1_id, user2_id=user2_id)
            _record_connection(user1_id, user2_id, score, now)
        match.connection_score = score
        match.compatibility_breakdown = dict(result.get('compatibility_breakdown') or {})
        match.match_strength = result.get('match_strength')
        match.match_tags = list(result.get('match_tags') or [])
        db.session.add(match)
        db.session.flush()
        stored.append(match)
    db.session.commit()
    current_app.logger.info(f"[matches] session={session.id} responses={len(responses)} matches={len(stored)}")
    return stored


def user_connections(user_id, limit: int = 10) -> List[ConnectionHistory]:
    return (ConnectionHistory.query
            .filter(or_(ConnectionHistory.user1_id == user_id, ConnectionHistory.user2_id == user_id))
            .order_by(ConnectionHistory.average_score.desc())
            .limit(limit)
            .all())


def connection_between(user_id, other_user_id) -> Optional[ConnectionHistory]:
    user1_id, user2_id = ordered_pair(user_id, other_user_id)
    return ConnectionHistory.query.filter(
        and_(ConnectionHistory.user1_id == user1_id, ConnectionHistory.user2_id == user2_id)
    ).first()
