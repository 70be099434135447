"""Typed coordinator failures.

Every failure the coordinator raises is one of these classes so transport
layers can render specific recovery guidance instead of a generic error.
"""
from flask import jsonify
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError


class QuizError(Exception):
    """Base class for all coordinator failures."""
    status_code = 400
    code = 'quiz_error'

    def __init__(self, message=None, **details):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        payload.update(self.details)
        return payload


class ValidationError(QuizError):
    """Missing or malformed input."""
    code = 'validation_error'


class TeamRequiredError(ValidationError):
    """Team selection required for new participants."""
    code = 'team_required'

    def __init__(self, external_key, teams):
        super().__init__(
            'Team selection required for new participants',
            external_key=external_key,
            team_required=True,
            teams=list(teams),
        )


class InvalidTransitionError(QuizError):
    """Phase transition not permitted from the current phase."""
    status_code = 409
    code = 'invalid_transition'

    def __init__(self, current, target):
        super().__init__(
            f'Cannot move quiz from {current} to {target}',
            phase=current,
            target=target,
        )


class DuplicateAnswerError(QuizError):
    """Answer already recorded for this participant and question."""
    status_code = 409
    code = 'duplicate_answer'

    def __init__(self, participant_id, question_id):
        super().__init__(
            'Answer already submitted for this question',
            participant_id=participant_id,
            question_id=question_id,
            already_submitted=True,
        )


class NotFoundError(QuizError):
    """Unknown entity id."""
    status_code = 404
    code = 'not_found'

    def __init__(self, kind, entity_id):
        super().__init__(f'{kind} {entity_id} not found', kind=kind, id=entity_id)


class StoreUnavailableError(QuizError):
    """Ledger transiently unreachable; retry with backoff."""
    status_code = 503
    code = 'store_unavailable'

    def __init__(self, message=None):
        super().__init__(message or 'Ledger unavailable, retry later', retryable=True)


# Driver-level failures that mean "the store did not answer in time"
STORE_FAILURES = (OperationalError, PoolTimeoutError)


def register_error_handlers(flask_app):
    @flask_app.errorhandler(QuizError)
    def handle_quiz_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @flask_app.errorhandler(OperationalError)
    @flask_app.errorhandler(PoolTimeoutError)
    def handle_store_failure(exc):
        from quizroom import db
        db.session.rollback()
        flask_app.logger.error(f"[ledger] store failure: {exc}")
        err = StoreUnavailableError()
        return jsonify(err.to_dict()), err.status_code
