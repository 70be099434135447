import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from quizroom.errors import StoreUnavailableError
from quizroom.services import answers, content, registry, session_machine


def _store_down(calls):
    def fail(*args, **kwargs):
        calls.append(args)
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))
    return fail


def test_failed_start_is_not_retried(flask_app, monkeypatch):
    calls = []
    monkeypatch.setattr(session_machine, '_locked_session', _store_down(calls))
    with pytest.raises(StoreUnavailableError) as excinfo:
        session_machine.start_quiz()
    assert len(calls) == 1
    assert excinfo.value.to_dict()['retryable'] is True


def test_failed_submit_is_not_retried(flask_app, monkeypatch):
    calls = []
    monkeypatch.setattr(answers, 'lock_row', _store_down(calls))
    with pytest.raises(StoreUnavailableError):
        answers.submit_answer('someone', 'something', 'A')
    assert len(calls) == 1


def test_read_gives_up_after_configured_attempts(flask_app, monkeypatch):
    calls = []
    delays = []
    flask_app.config['READ_RETRY_BACKOFF_MS'] = 10
    monkeypatch.setattr(session_machine, 'ensure_session', _store_down(calls))
    monkeypatch.setattr('quizroom.ledger.time.sleep', delays.append)
    with pytest.raises(StoreUnavailableError):
        session_machine.get_session()
    assert len(calls) == flask_app.config['READ_RETRY_ATTEMPTS']
    # Exponential backoff between attempts, none after the last
    assert delays == [0.01, 0.02]


def test_read_recovers_from_transient_failure(flask_app, monkeypatch):
    real = session_machine.ensure_session
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError('SELECT 1', {}, Exception('connection reset'))
        return real()

    monkeypatch.setattr(session_machine, 'ensure_session', flaky)
    assert session_machine.get_session().phase == 'waiting'
    assert len(calls) == 2


def test_version_conflicts_give_up_eventually(flask_app, make_question, monkeypatch):
    question = make_question()
    qid = question.id
    calls = []

    def conflict(question_id):
        calls.append(question_id)
        raise StaleDataError('UPDATE statement on table expected to update 1 row(s); 0 were matched.')

    monkeypatch.setattr(content, '_get_question', conflict)
    with pytest.raises(StoreUnavailableError):
        content.update_question(qid, {'text': 'Never lands'})
    assert len(calls) == flask_app.config['WRITE_CONFLICT_ATTEMPTS']


def test_store_outage_is_503_over_http(client, monkeypatch):
    monkeypatch.setattr(session_machine, 'ensure_session', _store_down([]))
    res = client.get('/api/quiz/session')
    assert res.status_code == 503
    data = res.get_json()
    assert data['code'] == 'store_unavailable'
    assert data['retryable'] is True


def test_raw_driver_error_is_503_over_http(client, monkeypatch):
    monkeypatch.setattr(registry, 'team_scoreboard', _store_down([]))
    res = client.get('/api/quiz/teams')
    assert res.status_code == 503
    assert res.get_json()['retryable'] is True
