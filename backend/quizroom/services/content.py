"""Topic and question records.

Deleting a topic deletes its questions and every answer that references
them. Editing a question never touches answers already recorded: their
``is_correct`` stays what it was at submission time.
"""
from flask import current_app

from quizroom import db
from quizroom.errors import NotFoundError, ValidationError
from quizroom.ledger import transactional, retry_read
from quizroom.models import Topic, Question, OPTIONS, utcnow

QUESTION_FIELDS = ('text', 'option_a', 'option_b', 'option_c', 'option_d')


def _required_text(data, field):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} is required', field=field)
    return value.strip()


def _get_topic(topic_id):
    topic = db.session.get(Topic, topic_id) if topic_id else None
    if topic is None:
        raise NotFoundError('topic', topic_id)
    return topic


def _get_question(question_id):
    question = db.session.get(Question, question_id) if question_id else None
    if question is None:
        raise NotFoundError('question', question_id)
    return question


def _question_values(data, partial=False):
    values = {}
    for field in QUESTION_FIELDS:
        if partial and field not in data:
            continue
        values[field] = _required_text(data, field)
    if not partial or 'correct_option' in data:
        # Dashboards send either case
        correct = str(data.get('correct_option') or '').strip().upper()
        if correct not in OPTIONS:
            raise ValidationError(
                f'correct_option must be one of {", ".join(OPTIONS)}',
                field='correct_option',
            )
        values['correct_option'] = correct
    return values


@retry_read
def list_topics():
    return Topic.query.order_by(Topic.created_at, Topic.id).all()


@transactional
def create_topic(name) -> Topic:
    topic = Topic(name=_required_text({'name': name}, 'name'), created_at=utcnow())
    db.session.add(topic)
    db.session.flush()
    return topic


@transactional
def rename_topic(topic_id, name) -> Topic:
    topic = _get_topic(topic_id)
    topic.name = _required_text({'name': name}, 'name')
    return topic


@transactional
def delete_topic(topic_id):
    """Delete a topic with its questions and their answers; returns row counts."""
    topic = _get_topic(topic_id)
    questions = list(topic.questions)
    answer_count = sum(len(q.answers) for q in questions)
    db.session.delete(topic)
    current_app.logger.info(
        f"[content] deleted topic {topic_id} with {len(questions)} questions and {answer_count} answers"
    )
    return {'topic_id': topic_id, 'questions': len(questions), 'answers': answer_count}


@retry_read
def list_questions(topic_id=None):
    query = Question.query
    if topic_id:
        query = query.filter_by(topic_id=topic_id)
    return query.order_by(Question.created_at.desc(), Question.id).all()


@retry_read
def get_question(question_id) -> Question:
    return _get_question(question_id)


@transactional
def create_question(data) -> Question:
    data = data or {}
    topic = _get_topic(data.get('topic_id'))
    now = utcnow()
    question = Question(topic_id=topic.id, created_at=now, updated_at=now, **_question_values(data))
    db.session.add(question)
    db.session.flush()
    return question


@transactional
def update_question(question_id, data) -> Question:
    data = data or {}
    question = _get_question(question_id)
    if 'topic_id' in data:
        question.topic_id = _get_topic(data.get('topic_id')).id
    for field, value in _question_values(data, partial=True).items():
        setattr(question, field, value)
    return question


@transactional
def delete_question(question_id):
    question = _get_question(question_id)
    answer_count = len(question.answers)
    db.session.delete(question)
    return {'question_id': question_id, 'answers': answer_count}
