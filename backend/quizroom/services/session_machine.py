"""Quiz session lifecycle.

The session is a single row with a fixed id. Every phase change goes
through ``_apply_transition`` under one process-wide lock plus a row lock,
so concurrent start/end/reset calls are linearized: the loser observes the
new phase and fails with InvalidTransitionError.

    waiting --start--> active --end--> finished
       ^                  |                |
       +------reset-------+------reset-----+
"""
import threading

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quizroom import db
from quizroom.errors import InvalidTransitionError, ValidationError
from quizroom.ledger import transactional, retry_read, lock_row
from quizroom.models import (
    QuizSession, Participant, Answer, SESSION_ID,
    PHASE_WAITING, PHASE_ACTIVE, PHASE_FINISHED, utcnow,
)

ALLOWED_TRANSITIONS = {
    PHASE_WAITING: (PHASE_ACTIVE, PHASE_WAITING),
    PHASE_ACTIVE: (PHASE_FINISHED, PHASE_WAITING),
    PHASE_FINISHED: (PHASE_WAITING,),
}

_session_lock = threading.Lock()


def ensure_session() -> QuizSession:
    """Return the singleton row, creating it on first use."""
    quiz = db.session.get(QuizSession, SESSION_ID)
    if quiz is not None:
        return quiz
    try:
        quiz = QuizSession(id=SESSION_ID, phase=PHASE_WAITING)
        db.session.add(quiz)
        db.session.commit()
    except IntegrityError:
        # Another request created it first
        db.session.rollback()
        quiz = db.session.get(QuizSession, SESSION_ID)
    return quiz


@retry_read
def get_session() -> QuizSession:
    return ensure_session()


def _locked_session() -> QuizSession:
    ensure_session()
    return lock_row(QuizSession, SESSION_ID)


def _apply_transition(quiz: QuizSession, target: str) -> QuizSession:
    if target not in ALLOWED_TRANSITIONS.get(quiz.phase, ()):
        raise InvalidTransitionError(quiz.phase, target)
    now = utcnow()
    if target == PHASE_ACTIVE:
        quiz.started_at = now
        quiz.finished_at = None
    elif target == PHASE_FINISHED:
        quiz.finished_at = now
    else:
        quiz.started_at = None
        quiz.finished_at = None
    previous = quiz.phase
    quiz.phase = target
    # Always touch the row so every transition publishes one session event
    quiz.updated_at = now
    current_app.logger.info(f"[session] {previous} -> {target}")
    return quiz


@transactional
def _start() -> QuizSession:
    quiz = _locked_session()
    if PHASE_ACTIVE not in ALLOWED_TRANSITIONS.get(quiz.phase, ()):
        raise InvalidTransitionError(quiz.phase, PHASE_ACTIVE)
    required = int(current_app.config.get('MIN_CONNECTED_TO_START', 1))
    connected = Participant.query.filter_by(connected=True).count()
    if connected < required:
        raise ValidationError(
            f'At least {required} connected participant(s) required to start',
            connected=connected,
        )
    return _apply_transition(quiz, PHASE_ACTIVE)


@transactional
def _end() -> QuizSession:
    return _apply_transition(_locked_session(), PHASE_FINISHED)


@transactional
def _reset():
    quiz = _locked_session()
    if PHASE_WAITING not in ALLOWED_TRANSITIONS.get(quiz.phase, ()):
        raise InvalidTransitionError(quiz.phase, PHASE_WAITING)
    # Answers reference participants, so they go first
    answers = Answer.query.all()
    for answer in answers:
        db.session.delete(answer)
    db.session.flush()
    participants = Participant.query.all()
    for participant in participants:
        db.session.delete(participant)
    db.session.flush()
    # Phase flip is the last write; it commits together with the wipe
    _apply_transition(quiz, PHASE_WAITING)
    current_app.logger.info(
        f"[session] reset wiped {len(participants)} participants and {len(answers)} answers"
    )
    return quiz, [p.id for p in participants]


def start_quiz() -> QuizSession:
    with _session_lock:
        return _start()


def end_quiz() -> QuizSession:
    with _session_lock:
        return _end()


def reset_quiz(confirm=False) -> QuizSession:
    """Destructive: deletes every participant and answer. Needs ``confirm=True``."""
    if confirm is not True:
        raise ValidationError('Reset must be confirmed', confirm_required=True)
    with _session_lock:
        quiz, removed_ids = _reset()
    from quizroom.services.answers import forget_participants
    forget_participants(removed_ids)
    return quiz
