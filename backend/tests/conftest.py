import os
import sys
import pytest

# Ensure the backend root (containing the `quizroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizroom import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    QUIZ_TEAMS = ('A', 'B')
    POINTS_PER_CORRECT = 100
    MIN_CONNECTED_TO_START = 1
    READ_RETRY_ATTEMPTS = 3
    READ_RETRY_BACKOFF_MS = 0
    WRITE_CONFLICT_ATTEMPTS = 3
    CHANGE_QUEUE_SIZE = 100


ADMIN_USERNAME = 'admin'
ADMIN_PASSWORD = 'secret'


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizroom.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def admin_user(flask_app):
    from quizroom.models import User
    user = User(username=ADMIN_USERNAME)
    user.set_password(ADMIN_PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def admin_client(flask_app, admin_user):
    test_client = flask_app.test_client()
    res = test_client.post('/login', json={'username': ADMIN_USERNAME, 'password': ADMIN_PASSWORD})
    assert res.status_code == 200
    return test_client


@pytest.fixture()
def make_question(flask_app):
    """Create questions straight through the content service."""
    from quizroom.services import content

    def _make(topic=None, correct='A', text='Question?'):
        if topic is None:
            topic = content.create_topic('General')
        return content.create_question({
            'topic_id': topic.id,
            'text': text,
            'option_a': 'first',
            'option_b': 'second',
            'option_c': 'third',
            'option_d': 'fourth',
            'correct_option': correct,
        })

    return _make


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
