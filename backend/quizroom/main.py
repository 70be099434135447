from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from quizroom.models import User

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the quizroom server!'})

@main.route('/health')
def health():
    return jsonify({'status': 'healthy'})

@main.route('/login', methods=['POST'])
def login():
    """Admin login; participants use /api/quiz/participants/login."""
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()
    if user and user.check_password(data.get('password') or ''):
        login_user(user, remember=True)
        return jsonify({'message': 'Logged in successfully.', 'user': user.to_dict()})
    return jsonify({'error': 'Invalid username or password'}), 401

@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})

@main.route('/me')
@login_required
def me():
    return jsonify(current_user.to_dict())
