"""Writes for session-scoped records: responses, chat, memes, reactions, votes.

Every write checks the session exists and the acting user participates
before anything is added, so a rejected call never leaves a row behind.
"""

from typing import List, Optional

from flask import current_app
from sqlalchemy import func

from vibelink import db
from vibelink.errors import NotFoundError, ValidationError
from vibelink.models import AudienceVote, ChatMessage, MemeReaction, MemeUpload, RoundResponse, utcnow
from .lifecycle import get_session, require_participant, touch_session


def submit_response(session_id, user_id, round_number: int, round_type: Optional[str] = None,
                    response_text: Optional[str] = None, response_data: Optional[dict] = None) -> RoundResponse:
    """Store a participant's answer for a round, replacing any earlier answer for that round."""
    session = require_participant(session_id, user_id)
    if isinstance(round_number, bool) or not isinstance(round_number, int) or round_number < 1:
        raise ValidationError('roundNumber must be a positive integer')
    if response_data is not None and not isinstance(response_data, dict):
        raise ValidationError('responseData must be an object')

    response = RoundResponse.query.filter_by(
        game_session_id=session.id, user_id=user_id, round_number=round_number
    ).first()
    if response is None:
        response = RoundResponse(game_session_id=session.id, user_id=user_id, round_number=round_number)
        verb = 'stored'
    else:
        verb = 'replaced'
    response.round_type = round_type or session.game_state
    response.response_text = response_text
    response.response_data = dict(response_data or {})
    response.raw_score = int(current_app.config.get('RESPONSE_BASE_SCORE', 10))
    response.submitted_at = utcnow()
    db.session.add(response)
    touch_session(session)
    db.session.commit()
    current_app.logger.info(f"[response] session={session.id} user={user_id} round={round_number} {verb}")
    return response


def post_message(session_id, sender_id, text: str, round_type: Optional[str] = None,
                 is_anonymous: bool = False) -> ChatMessage:
    session = require_participant(session_id, sender_id)
    if not isinstance(text, str) or not text.strip():
        raise ValidationError('message is required')
    message = ChatMessage(
        game_session_id=session.id,
        sender_id=sender_id,
        message_text=text,
        round_type=round_type or 'general',
        is_anonymous=bool(is_anonymous),
    )
    db.session.add(message)
    touch_session(session)
    db.session.commit()
    return message


def list_messages(session_id, limit: int = 100) -> List[ChatMessage]:
    session = get_session(session_id)
    newest = (ChatMessage.query
              .filter_by(game_session_id=session.id)
              .order_by(ChatMessage.created_at.desc())
              .limit(limit)
              .all())
    return list(reversed(newest))


def upload_meme(session_id, user_id, meme_url: str, caption: str, template_id: Optional[str] = None) -> MemeUpload:
    session = require_participant(session_id, user_id)
    if not meme_url or not caption:
        raise ValidationError('memeUrl and caption are required')
    meme = MemeUpload(
        game_session_id=session.id,
        user_id=user_id,
        meme_url=meme_url,
        caption=caption,
        template_id=template_id,
    )
    db.session.add(meme)
    touch_session(session)
    db.session.commit()
    return meme


def list_memes(session_id) -> List[MemeUpload]:
    session = get_session(session_id)
    return (MemeUpload.query
            .filter_by(game_session_id=session.id)
            .order_by(MemeUpload.total_reactions.desc(), MemeUpload.created_at)
            .all())


def react_to_meme(session_id, meme_id, user_id, reaction_type: str) -> MemeUpload:
    """Record a voter's reaction to a meme; the latest reaction per voter wins."""
    session = require_participant(session_id, user_id)
    if not reaction_type:
        raise ValidationError('reactionType is required')
    meme = MemeUpload.query.filter_by(id=meme_id, game_session_id=session.id).first()
    if not meme:
        raise NotFoundError('Meme not found')

    reaction = MemeReaction.query.filter_by(meme_id=meme.id, user_id=user_id).first()
    if reaction is None:
        reaction = MemeReaction(meme_id=meme.id, user_id=user_id)
    reaction.reaction_type = reaction_type
    db.session.add(reaction)
    db.session.flush()
    meme.total_reactions = MemeReaction.query.filter_by(meme_id=meme.id).count()
    db.session.add(meme)
    touch_session(session)
    db.session.commit()
    return meme


def cast_audience_vote(session_id, voter_id, category: str, nominee_id, weight: int = 1) -> int:
    """Record one audience vote and return the nominee's running total in that category.

    Votes accumulate: the same voter may vote for the same nominee repeatedly.
    """
    session = get_session(session_id)
    if not category:
        raise ValidationError('category is required')
    if not session.has_participant(nominee_id):
        raise ValidationError('Nominee is not a participant in this session')
    vote = AudienceVote(
        game_session_id=session.id,
        voter_id=voter_id,
        category=category,
        nominee_id=nominee_id,
        vote_weight=weight,
    )
    db.session.add(vote)
    touch_session(session)
    db.session.commit()
    return vote_total(session.id, category, nominee_id)


def vote_total(session_id, category: str, nominee_id) -> int:
    total = (db.session.query(func.coalesce(func.sum(AudienceVote.vote_weight), 0))
             .filter(AudienceVote.game_session_id == session_id,
                     AudienceVote.category == category,
                     AudienceVote.nominee_id == nominee_id)
             .scalar())
    return int(total or 0)


def audience_tally(session_id) -> dict:
    """Votes per category, nominees ordered by total descending."""
    session = get_session(session_id)
    rows = (db.session.query(AudienceVote.category, AudienceVote.nominee_id,
                             func.sum(AudienceVote.vote_weight))
            .filter(AudienceVote.game_session_id == session.id)
            .group_by(AudienceVote.category, AudienceVote.nominee_id)
            .all())
    tally = {}
    for category, nominee_id, total in rows:
        tally.setdefault(category, []).append({'nominee_id': nominee_id, 'total_votes': int(total or 0)})
    for entries in tally.values():
        entries.sort(key=lambda e: e['total_votes'], reverse=True)
    return tally
