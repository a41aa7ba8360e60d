from vibelink import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import uuid


SESSION_STATUSES = ('waiting', 'in_progress', 'finished', 'cancelled')
ACTIVE_STATUSES = ('waiting', 'in_progress')
ENDED_STATUSES = ('finished', 'cancelled')
ROOM_TYPES = ('friendship', 'collaborators', 'mentorship', 'travel', 'gamers', 'love-connection')


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


def ordered_pair(a, b):
    """Matches and connection history store an unordered pair as (low, high)."""
    return (a, b) if a <= b else (b, a)


class User(UserMixin, db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    username = db.Column(db.String(100), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    avatar = db.Column(db.String(255), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self, include_email=False):
        data = {
            'id': self.id,
            'username': self.username,
            'avatar': self.avatar,
            'bio': self.bio,
        }
        if include_email:
            data['email'] = self.email
        return data


class Room(db.Model):
    __tablename__ = 'rooms'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    room_type = db.Column(db.String(50), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    max_participants = db.Column(db.Integer, default=8, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'room_type': self.room_type,
            'name': self.name,
            'description': self.description,
            'max_participants': self.max_participants,
            'is_active': self.is_active,
        }


class GameSession(db.Model):
    __tablename__ = 'game_sessions'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    room_id = db.Column(db.String(36), db.ForeignKey('rooms.id', ondelete='SET NULL'), nullable=True, index=True)
    status = db.Column(db.String(50), nullable=False, default='waiting', index=True)  # waiting, in_progress, finished, cancelled
    current_round = db.Column(db.Integer, nullable=False, default=0)
    game_state = db.Column(db.String(50), nullable=True)  # current round label
    participant_ids = db.Column(db.JSON, nullable=False, default=list)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    # `metadata` is reserved on declarative models
    meta = db.Column('metadata', db.JSON, nullable=False, default=dict)

    room = db.relationship('Room')

    def has_participant(self, user_id) -> bool:
        return user_id in (self.participant_ids or [])

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'status': self.status,
            'current_round': self.current_round,
            'game_state': self.game_state,
            'participant_ids': list(self.participant_ids or []),
            'started_at': _iso(self.started_at),
            'ended_at': _iso(self.ended_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'metadata': dict(self.meta or {}),
        }


class RoundResponse(db.Model):
    __tablename__ = 'round_responses'
    __table_args__ = (db.UniqueConstraint('game_session_id', 'user_id', 'round_number', name='uq_response_per_round'),)
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    game_session_id = db.Column(db.String(36), db.ForeignKey('game_sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    round_type = db.Column(db.String(50), nullable=True)
    response_text = db.Column(db.Text, nullable=True)
    response_data = db.Column(db.JSON, nullable=True)
    raw_score = db.Column(db.Integer, default=0, nullable=False)
    sentiment_score = db.Column(db.Float, nullable=True)
    empathy_score = db.Column(db.Float, nullable=True)
    energy_level = db.Column(db.Integer, nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'game_session_id': self.game_session_id,
            'user_id': self.user_id,
            'round_number': self.round_number,
            'round_type': self.round_type,
            'response_text': self.response_text,
            'response_data': self.response_data or {},
            'raw_score': self.raw_score,
            'sentiment_score': self.sentiment_score,
            'empathy_score': self.empathy_score,
            'energy_level': self.energy_level,
            'submitted_at': _iso(self.submitted_at),
        }


class Match(db.Model):
    __tablename__ = 'matches'
    __table_args__ = (db.UniqueConstraint('game_session_id', 'user1_id', 'user2_id', name='uq_match_pair'),)
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    game_session_id = db.Column(db.String(36), db.ForeignKey('game_sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    user1_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    user2_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    connection_score = db.Column(db.Integer, nullable=True)
    compatibility_breakdown = db.Column(db.JSON, nullable=True)
    match_strength = db.Column(db.String(50), nullable=True)
    match_tags = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'game_session_id': self.game_session_id,
            'user1_id': self.user1_id,
            'user2_id': self.user2_id,
            'connection_score': self.connection_score,
            'compatibility_breakdown': self.compatibility_breakdown or {},
            'match_strength': self.match_strength,
            'match_tags': list(self.match_tags or []),
            'created_at': _iso(self.created_at),
        }


class ConnectionHistory(db.Model):
    __tablename__ = 'connection_history'
    __table_args__ = (db.UniqueConstraint('user1_id', 'user2_id', name='uq_connection_pair'),)
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user1_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    user2_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    total_match_count = db.Column(db.Integer, default=0, nullable=False)
    average_score = db.Column(db.Integer, default=0, nullable=False)
    last_matched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def other(self, user_id):
        return self.user2_id if self.user1_id == user_id else self.user1_id

    def to_dict(self):
        return {
            'id': self.id,
            'user1_id': self.user1_id,
            'user2_id': self.user2_id,
            'total_match_count': self.total_match_count,
            'average_score': self.average_score,
            'last_matched_at': _iso(self.last_matched_at),
        }


class ChatMessage(db.Model):
    __tablename__ = 'chat_messages'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    game_session_id = db.Column(db.String(36), db.ForeignKey('game_sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    sender_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    message_text = db.Column(db.Text, nullable=False)
    round_type = db.Column(db.String(50), nullable=True)
    sentiment_score = db.Column(db.Float, nullable=True)
    is_anonymous = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)

    sender = db.relationship('User')

    def to_dict(self):
        sender = None
        if not self.is_anonymous:
            sender = {'id': self.sender_id, 'username': self.sender.username if self.sender else None}
        return {
            'id': self.id,
            'game_session_id': self.game_session_id,
            'sender': sender,
            'message': self.message_text,
            'round_type': self.round_type,
            'is_anonymous': self.is_anonymous,
            'created_at': _iso(self.created_at),
        }


class MemeUpload(db.Model):
    __tablename__ = 'meme_uploads'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    game_session_id = db.Column(db.String(36), db.ForeignKey('game_sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    meme_url = db.Column(db.String(255), nullable=False)
    caption = db.Column(db.Text, nullable=False)
    template_id = db.Column(db.String(100), nullable=True)
    total_reactions = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'game_session_id': self.game_session_id,
            'user_id': self.user_id,
            'meme_url': self.meme_url,
            'caption': self.caption,
            'template_id': self.template_id,
            'total_reactions': self.total_reactions,
            'created_at': _iso(self.created_at),
        }


class MemeReaction(db.Model):
    __tablename__ = 'meme_reactions'
    __table_args__ = (db.UniqueConstraint('meme_id', 'user_id', name='uq_reaction_per_voter'),)
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    meme_id = db.Column(db.String(36), db.ForeignKey('meme_uploads.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    reaction_type = db.Column(db.String(50), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'meme_id': self.meme_id,
            'user_id': self.user_id,
            'reaction_type': self.reaction_type,
        }


class AudienceVote(db.Model):
    __tablename__ = 'audience_votes'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    game_session_id = db.Column(db.String(36), db.ForeignKey('game_sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    voter_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    category = db.Column(db.String(100), nullable=False, index=True)
    nominee_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    vote_weight = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'game_session_id': self.game_session_id,
            'voter_id': self.voter_id,
            'category': self.category,
            'nominee_id': self.nominee_id,
            'vote_weight': self.vote_weight,
        }
