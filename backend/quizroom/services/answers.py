"""Answer submission pipeline and per-participant question sequence.

At most one answer exists per (participant, question). The duplicate check,
the answer insert and the score increment run in one transaction while the
participant row is locked, so a retried or concurrent submission for the
same question observes the first answer and is rejected instead of scoring
twice. Different participants never wait on each other.
"""
import random

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quizroom import db
from quizroom.errors import DuplicateAnswerError, NotFoundError, ValidationError
from quizroom.ledger import KeyedLocks, transactional, retry_read, lock_row
from quizroom.models import (
    Answer, Participant, Question, QuizSession, SESSION_ID, OPTIONS,
    PHASE_ACTIVE, STATUS_ANSWERING, STATUS_FINISHED, utcnow,
)

_participant_locks = KeyedLocks()


def normalize_option(option):
    value = str(option or '').strip().upper()
    if value not in OPTIONS:
        raise ValidationError(f'Option must be one of {", ".join(OPTIONS)}', options=list(OPTIONS))
    return value


def forget_participants(participant_ids):
    _participant_locks.forget(participant_ids)


@transactional
def _submit(participant_id, question_id, option):
    participant = lock_row(Participant, participant_id) if participant_id else None
    if participant is None:
        raise NotFoundError('participant', participant_id)
    question = db.session.get(Question, question_id) if question_id else None
    if question is None:
        raise NotFoundError('question', question_id)

    quiz = db.session.get(QuizSession, SESSION_ID)
    if quiz is None or quiz.phase != PHASE_ACTIVE:
        raise ValidationError(
            'Quiz is not accepting answers',
            phase=quiz.phase if quiz is not None else None,
        )

    existing = Answer.query.filter_by(participant_id=participant.id, question_id=question.id).first()
    if existing is not None:
        current_app.logger.info(f"[answer] duplicate participant={participant.id} question={question.id}")
        raise DuplicateAnswerError(participant.id, question.id)

    # Correctness is a snapshot of the question as it is right now
    is_correct = option == question.correct_option
    db.session.add(Answer(
        participant_id=participant.id,
        question_id=question.id,
        selected_option=option,
        is_correct=is_correct,
        created_at=utcnow(),
    ))
    if is_correct:
        participant.score += int(current_app.config.get('POINTS_PER_CORRECT', 100))

    db.session.flush()
    answered = Answer.query.filter_by(participant_id=participant.id).count()
    total = Question.query.count()
    participant.status = STATUS_FINISHED if answered >= total else STATUS_ANSWERING
    participant.last_seen = utcnow()

    current_app.logger.info(
        f"[answer] participant={participant.id} question={question.id} option={option} "
        f"correct={is_correct} score={participant.score}"
    )
    return {
        'is_correct': is_correct,
        'new_score': participant.score,
        'correct_option': question.correct_option,
        'status': participant.status,
        'answered': answered,
        'total': total,
    }


def submit_answer(participant_id, question_id, selected_option):
    """Record one answer and apply its score exactly once.

    Returns ``{'is_correct', 'new_score', ...}``; raises DuplicateAnswerError
    when this participant already answered the question.
    """
    option = normalize_option(selected_option)
    try:
        with _participant_locks.hold(participant_id):
            try:
                return _submit(participant_id, question_id, option)
            except IntegrityError as exc:
                # The unique constraint caught a submission from another process
                current_app.logger.info(f"[answer] duplicate by constraint participant={participant_id} question={question_id}")
                raise DuplicateAnswerError(participant_id, question_id) from exc
    except NotFoundError as exc:
        # Unknown ids must not leave a mutex behind
        if exc.details.get('kind') == 'participant':
            _participant_locks.forget([participant_id])
        raise


def _answered_ids(participant_id):
    if not participant_id or db.session.get(Participant, participant_id) is None:
        raise NotFoundError('participant', participant_id)
    rows = db.session.query(Answer.question_id).filter(Answer.participant_id == participant_id).all()
    return {row[0] for row in rows}


@retry_read
def answered_question_ids(participant_id):
    return _answered_ids(participant_id)


@retry_read
def question_sequence(participant_id, seed=None):
    """Unanswered questions in a participant-local shuffled order.

    The same seed over the same question set gives the same order. Nothing
    about the order is stored: a reconnect with a new seed may reshuffle,
    and answered questions are skipped by id, not by position.
    """
    answered = _answered_ids(participant_id)
    questions = Question.query.order_by(Question.created_at, Question.id).all()
    random.Random(seed).shuffle(questions)
    return [q for q in questions if q.id not in answered]
