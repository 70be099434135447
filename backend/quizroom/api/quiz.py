from flask import Blueprint, jsonify, request
from flask_login import login_required

from quizroom.errors import ValidationError
from quizroom.services import answers, registry, session_machine


quiz = Blueprint('quiz', __name__)


def _payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@quiz.route('/session', methods=['GET'])
def get_session():
    return jsonify(session_machine.get_session().to_dict())


@quiz.route('/session/start', methods=['POST'])
@login_required
def start_quiz():
    return jsonify(session_machine.start_quiz().to_dict())


@quiz.route('/session/end', methods=['POST'])
@login_required
def end_quiz():
    return jsonify(session_machine.end_quiz().to_dict())


@quiz.route('/session/reset', methods=['POST'])
@login_required
def reset_quiz():
    data = _payload()
    return jsonify(session_machine.reset_quiz(confirm=data.get('confirm')).to_dict())


@quiz.route('/participants/login', methods=['POST'])
def login_participant():
    data = _payload()
    participant, created = registry.login(data.get('external_key'), data.get('team'))
    return jsonify({'participant': participant.to_dict(), 'created': created}), 201 if created else 200


@quiz.route('/participants', methods=['GET'])
@login_required
def list_participants():
    participants = registry.list_participants()
    totals = registry.aggregate_teams(participants)
    return jsonify({
        'participants': [p.to_dict() for p in participants],
        'teams': totals,
        'leader': registry.leading_team(totals),
    })


@quiz.route('/participants/<string:participant_id>', methods=['GET'])
def get_participant(participant_id):
    return jsonify(registry.get_participant(participant_id).to_dict())


@quiz.route('/participants/<string:participant_id>/status', methods=['POST'])
def set_participant_status(participant_id):
    data = _payload()
    return jsonify(registry.set_status(participant_id, data.get('status')).to_dict())


@quiz.route('/participants/<string:participant_id>/logout', methods=['POST'])
def logout_participant(participant_id):
    return jsonify(registry.set_connected(participant_id, False).to_dict())


@quiz.route('/participants/<string:participant_id>/answers', methods=['GET'])
def list_answered(participant_id):
    return jsonify({'question_ids': sorted(answers.answered_question_ids(participant_id))})


@quiz.route('/participants/<string:participant_id>/questions', methods=['GET'])
def question_sequence(participant_id):
    seed = request.args.get('seed')
    questions = answers.question_sequence(participant_id, seed=seed)
    return jsonify({
        'seed': seed,
        'questions': [q.to_dict(include_correct=False) for q in questions],
    })


@quiz.route('/answers', methods=['POST'])
def submit_answer():
    data = _payload()
    result = answers.submit_answer(
        data.get('participant_id'),
        data.get('question_id'),
        data.get('option', data.get('selected_option')),
    )
    return jsonify(result), 201


@quiz.route('/teams', methods=['GET'])
def team_scores():
    return jsonify(registry.team_scoreboard())
