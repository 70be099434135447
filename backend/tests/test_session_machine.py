import threading

import pytest

from quizroom import db
from quizroom.errors import InvalidTransitionError, ValidationError
from quizroom.models import Answer, Participant, Question, Topic, SESSION_ID
from quizroom.services import answers, registry, session_machine


def test_session_row_created_lazily(flask_app):
    quiz = session_machine.get_session()
    assert quiz.id == SESSION_ID
    assert quiz.phase == 'waiting'
    assert quiz.version == 1


def test_start_and_end(flask_app):
    registry.login('p1', 'A')
    quiz = session_machine.start_quiz()
    assert quiz.phase == 'active'
    assert quiz.started_at is not None
    assert quiz.finished_at is None

    quiz = session_machine.end_quiz()
    assert quiz.phase == 'finished'
    assert quiz.finished_at is not None


def test_start_twice_fails_and_leaves_phase(flask_app):
    registry.login('p1', 'A')
    session_machine.start_quiz()
    with pytest.raises(InvalidTransitionError) as excinfo:
        session_machine.start_quiz()
    assert excinfo.value.details['phase'] == 'active'
    assert session_machine.get_session().phase == 'active'


def test_start_from_finished_is_invalid(flask_app):
    registry.login('p1', 'A')
    session_machine.start_quiz()
    session_machine.end_quiz()
    with pytest.raises(InvalidTransitionError):
        session_machine.start_quiz()
    with pytest.raises(InvalidTransitionError):
        session_machine.end_quiz()


def test_start_without_connected_participants(flask_app):
    with pytest.raises(ValidationError):
        session_machine.start_quiz()
    assert session_machine.get_session().phase == 'waiting'


def test_start_respects_configured_minimum(flask_app):
    flask_app.config['MIN_CONNECTED_TO_START'] = 2
    registry.login('p1', 'A')
    with pytest.raises(ValidationError) as excinfo:
        session_machine.start_quiz()
    assert excinfo.value.details['connected'] == 1
    registry.login('p2', 'B')
    assert session_machine.start_quiz().phase == 'active'


def test_concurrent_starts_linearized(flask_app):
    registry.login('p1', 'A')
    results = []
    barrier = threading.Barrier(2)

    def attempt():
        with flask_app.app_context():
            barrier.wait()
            try:
                session_machine.start_quiz()
                results.append('ok')
            except InvalidTransitionError:
                results.append('rejected')

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ['ok', 'rejected']
    db.session.expire_all()
    assert session_machine.get_session().phase == 'active'


def test_reset_requires_confirm(flask_app):
    registry.login('p1', 'A')
    with pytest.raises(ValidationError):
        session_machine.reset_quiz()
    with pytest.raises(ValidationError):
        session_machine.reset_quiz(confirm='yes')
    assert Participant.query.count() == 1


def test_reset_from_every_phase(flask_app, make_question):
    question = make_question(correct='A')
    participant, _ = registry.login('p1', 'A')
    session_machine.start_quiz()
    answers.submit_answer(participant.id, question.id, 'A')
    session_machine.end_quiz()

    quiz = session_machine.reset_quiz(confirm=True)
    assert quiz.phase == 'waiting'
    assert quiz.started_at is None
    assert quiz.finished_at is None
    assert Participant.query.count() == 0
    assert Answer.query.count() == 0
    # Content survives a reset
    assert Topic.query.count() == 1
    assert Question.query.count() == 1

    # Reset from waiting is a no-op on an empty room
    assert session_machine.reset_quiz(confirm=True).phase == 'waiting'

    registry.login('p2', 'B')
    session_machine.start_quiz()
    assert session_machine.reset_quiz(confirm=True).phase == 'waiting'
    assert Participant.query.count() == 0


def test_every_transition_bumps_version(flask_app):
    registry.login('p1', 'A')
    v0 = session_machine.get_session().version
    session_machine.start_quiz()
    v1 = session_machine.get_session().version
    session_machine.end_quiz()
    v2 = session_machine.get_session().version
    session_machine.reset_quiz(confirm=True)
    v3 = session_machine.get_session().version
    assert v0 < v1 < v2 < v3
