"""Leaderboards are computed at read time from round responses."""

from datetime import timedelta

from sqlalchemy import func, or_

from vibelink import db
from vibelink.errors import ValidationError
from vibelink.models import Match, RoundResponse, User, utcnow
from .lifecycle import get_session


LEADERBOARD_PERIODS = {
    'all_time': None,
    'weekly': timedelta(days=7),
    'daily': timedelta(days=1),
}


def session_leaderboard(session_id, limit: int = 10):
    """Rank the session's participants by summed response score.

    Participants without responses score 0. Equal scores keep the order of the
    session's participant list.
    """
    session = get_session(session_id)
    participants = list(session.participant_ids or [])
    totals = {
        user_id: (int(score or 0), int(rounds or 0), sentiment)
        for user_id, score, rounds, sentiment in (
            db.session.query(RoundResponse.user_id,
                             func.sum(RoundResponse.raw_score),
                             func.count(RoundResponse.round_number.distinct()),
                             func.avg(RoundResponse.sentiment_score))
            .filter(RoundResponse.game_session_id == session.id)
            .group_by(RoundResponse.user_id)
            .all()
        )
    }
    users = {u.id: u for u in User.query.filter(User.id.in_(participants)).all()} if participants else {}

    entries = []
    for user_id in participants:
        score, rounds, sentiment = totals.get(user_id, (0, 0, None))
        user = users.get(user_id)
        entries.append({
            'id': user_id,
            'username': user.username if user else None,
            'avatar': user.avatar if user else None,
            'score': score,
            'roundsCompleted': rounds,
            'averageSentiment': float(sentiment) if sentiment is not None else 0.0,
        })
    # sorted() is stable, so ties keep participant order
    entries = sorted(entries, key=lambda e: e['score'], reverse=True)[:limit]
    for rank, entry in enumerate(entries, start=1):
        entry['rank'] = rank
    return entries


def global_leaderboard(period: str = 'all_time', limit: int = 100):
    if period not in LEADERBOARD_PERIODS:
        raise ValidationError('Invalid leaderboard_type', details={'allowed': sorted(LEADERBOARD_PERIODS)})
    q = (db.session.query(RoundResponse.user_id,
                          func.sum(RoundResponse.raw_score).label('score'),
                          func.count(RoundResponse.game_session_id.distinct()).label('sessions'))
         .group_by(RoundResponse.user_id))
    window = LEADERBOARD_PERIODS[period]
    since = None
    if window is not None:
        since = utcnow() - window
        q = q.filter(RoundResponse.submitted_at >= since)
    rows = q.order_by(func.sum(RoundResponse.raw_score).desc(), RoundResponse.user_id).limit(limit).all()

    user_ids = [r.user_id for r in rows]
    users = {u.id: u for u in User.query.filter(User.id.in_(user_ids)).all()} if user_ids else {}
    entries = []
    for rank, row in enumerate(rows, start=1):
        matches = Match.query.filter(or_(Match.user1_id == row.user_id, Match.user2_id == row.user_id))
        if since is not None:
            matches = matches.filter(Match.created_at >= since)
        scores = [m.connection_score for m in matches.all() if m.connection_score is not None]
        user = users.get(row.user_id)
        entries.append({
            'rank': rank,
            'user_id': row.user_id,
            'username': user.username if user else None,
            'avatar': user.avatar if user else None,
            'score': int(row.score or 0),
            'sessions_played': int(row.sessions or 0),
            'matches_count': len(scores),
            'average_match_score': round(sum(scores) / len(scores)) if scores else 0,
            'leaderboard_type': period,
        })
    return entries
