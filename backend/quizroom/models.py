from quizroom import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import uuid

# Fixed id of the singleton session row
SESSION_ID = '00000000-0000-0000-0000-000000000001'

PHASE_WAITING = 'waiting'
PHASE_ACTIVE = 'active'
PHASE_FINISHED = 'finished'
PHASES = (PHASE_WAITING, PHASE_ACTIVE, PHASE_FINISHED)

STATUS_WAITING = 'waiting'
STATUS_ANSWERING = 'answering'
STATUS_FINISHED = 'finished'
PARTICIPANT_STATUSES = (STATUS_WAITING, STATUS_ANSWERING, STATUS_FINISHED)

OPTIONS = ('A', 'B', 'C', 'D')


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    """Admin account; participants never log in through here."""
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class QuizSession(db.Model):
    __tablename__ = 'quiz_session'
    id = db.Column(db.String(36), primary_key=True, default=lambda: SESSION_ID)
    phase = db.Column(db.String(16), nullable=False, default=PHASE_WAITING)  # waiting, active, finished
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version = db.Column(db.Integer, nullable=False, default=1)
    # UPDATE/DELETE only match the version that was read; a stale write fails instead of reusing it
    __mapper_args__ = {'version_id_col': version}

    def to_dict(self):
        return {
            'id': self.id,
            'phase': self.phase,
            'started_at': _iso(self.started_at),
            'finished_at': _iso(self.finished_at),
            'updated_at': _iso(self.updated_at),
            'version': self.version,
        }


class Topic(db.Model):
    __tablename__ = 'topic'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}
    questions = db.relationship(
        'Question',
        back_populates='topic',
        cascade='all, delete-orphan',
        order_by='Question.created_at',
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'created_at': _iso(self.created_at),
            'version': self.version,
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    topic_id = db.Column(db.String(36), db.ForeignKey('topic.id', ondelete='CASCADE'), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    option_a = db.Column(db.Text, nullable=False)
    option_b = db.Column(db.Text, nullable=False)
    option_c = db.Column(db.Text, nullable=False)
    option_d = db.Column(db.Text, nullable=False)
    correct_option = db.Column(db.String(1), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}
    topic = db.relationship('Topic', back_populates='questions')
    answers = db.relationship('Answer', back_populates='question', cascade='all, delete-orphan')

    def option_text(self, option):
        return getattr(self, f'option_{option.lower()}')

    def to_dict(self, include_correct=True):
        data = {
            'id': self.id,
            'topic_id': self.topic_id,
            'text': self.text,
            'options': {opt: self.option_text(opt) for opt in OPTIONS},
            'created_at': _iso(self.created_at),
            'version': self.version,
        }
        if include_correct:
            data['correct_option'] = self.correct_option
        return data


class Participant(db.Model):
    __tablename__ = 'participant'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    external_key = db.Column(db.String(64), unique=True, nullable=False, index=True)
    team = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_WAITING)  # waiting, answering, finished
    score = db.Column(db.Integer, nullable=False, default=0)
    connected = db.Column(db.Boolean, nullable=False, default=True)
    last_seen = db.Column(db.DateTime(timezone=True), default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}
    answers = db.relationship('Answer', back_populates='participant', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('score >= 0', name='ck_participant_score_non_negative'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'external_key': self.external_key,
            'team': self.team,
            'status': self.status,
            'score': self.score,
            'connected': self.connected,
            'last_seen': _iso(self.last_seen),
            'created_at': _iso(self.created_at),
            'version': self.version,
        }


class Answer(db.Model):
    __tablename__ = 'answer'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    participant_id = db.Column(db.String(36), db.ForeignKey('participant.id', ondelete='CASCADE'), nullable=False, index=True)
    question_id = db.Column(db.String(36), db.ForeignKey('question.id', ondelete='CASCADE'), nullable=False, index=True)
    selected_option = db.Column(db.String(1), nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {'version_id_col': version}
    participant = db.relationship('Participant', back_populates='answers')
    question = db.relationship('Question', back_populates='answers')

    __table_args__ = (
        db.UniqueConstraint('participant_id', 'question_id', name='uq_answer_participant_question'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'participant_id': self.participant_id,
            'question_id': self.question_id,
            'selected_option': self.selected_option,
            'is_correct': self.is_correct,
            'created_at': _iso(self.created_at),
            'version': self.version,
        }
