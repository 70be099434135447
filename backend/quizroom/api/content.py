from flask import Blueprint, jsonify, request
from flask_login import login_required

from quizroom.services import content as svc


content = Blueprint('content', __name__)


@content.route('/topics', methods=['GET'])
def list_topics():
    return jsonify([t.to_dict() for t in svc.list_topics()])


@content.route('/topics', methods=['POST'])
@login_required
def create_topic():
    data = request.get_json(silent=True) or {}
    return jsonify(svc.create_topic(data.get('name')).to_dict()), 201


@content.route('/topics/<string:topic_id>', methods=['PATCH'])
@login_required
def rename_topic(topic_id):
    data = request.get_json(silent=True) or {}
    return jsonify(svc.rename_topic(topic_id, data.get('name')).to_dict())


@content.route('/topics/<string:topic_id>', methods=['DELETE'])
@login_required
def delete_topic(topic_id):
    return jsonify({'deleted': svc.delete_topic(topic_id)})


@content.route('/questions', methods=['GET'])
@login_required
def list_questions():
    topic_id = request.args.get('topic_id')
    return jsonify([q.to_dict() for q in svc.list_questions(topic_id=topic_id)])


@content.route('/questions', methods=['POST'])
@login_required
def create_question():
    return jsonify(svc.create_question(request.get_json(silent=True)).to_dict()), 201


@content.route('/questions/<string:question_id>', methods=['GET'])
@login_required
def get_question(question_id):
    return jsonify(svc.get_question(question_id).to_dict())


@content.route('/questions/<string:question_id>', methods=['PATCH'])
@login_required
def update_question(question_id):
    return jsonify(svc.update_question(question_id, request.get_json(silent=True)).to_dict())


@content.route('/questions/<string:question_id>', methods=['DELETE'])
@login_required
def delete_question(question_id):
    return jsonify({'deleted': svc.delete_question(question_id)})
