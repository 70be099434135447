from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Session events that version rows and publish committed changes
    from quizroom import ledger  # noqa: F401
    from quizroom.fanout import change_feed
    change_feed.configure(queue_size=flask_app.config.get('CHANGE_QUEUE_SIZE', 1000))

    from quizroom.errors import register_error_handlers
    register_error_handlers(flask_app)

    # Import and register blueprints here
    from quizroom.main import main
    flask_app.register_blueprint(main)

    from quizroom.api.quiz import quiz
    flask_app.register_blueprint(quiz, url_prefix='/api/quiz')

    from quizroom.api.content import content
    flask_app.register_blueprint(content, url_prefix='/api/content')

    # Register Socket.IO event handlers
    from quizroom.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Flask-Login user loader (admin accounts only)
    from quizroom.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Admin login required', 'code': 'unauthorized'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from quizroom.models import User, QuizSession, Topic, SESSION_ID
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            change_feed.configure(queue_size=flask_app.config.get('CHANGE_QUEUE_SIZE', 1000))

            admin = User(username=flask_app.config.get('ADMIN_USERNAME', 'admin'))
            admin.set_password(flask_app.config.get('ADMIN_PASSWORD', 'password'))
            db.session.add(admin)
            db.session.add(QuizSession(id=SESSION_ID))
            db.session.add(Topic(name='General knowledge'))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
