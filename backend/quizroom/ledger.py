"""Ledger glue between the coordinator and the relational store.

- row versions are optimistic: every UPDATE/DELETE is guarded by the version
  it read, so two overlapping writes can never commit the same version
- inserts, updates and deletes are captured per flush and published to the
  change feed only after the surrounding transaction commits
- ``transactional`` / ``retry_read`` put the error policy in one place:
  a write that failed against the store is never retried, a write that lost
  a version race is rolled back and rerun on fresh rows, reads are retried
  with backoff
"""
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime
from functools import wraps

from flask import current_app
from sqlalchemy import event, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from quizroom import db
from quizroom.errors import QuizError, StoreUnavailableError, STORE_FAILURES
from quizroom.fanout import ChangeEvent, change_feed
from quizroom.models import QuizSession, Topic, Question, Participant, Answer

TRACKED_MODELS = (QuizSession, Topic, Question, Participant, Answer)
_PENDING_KEY = 'quizroom_pending_changes'


def _serialize(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_snapshot(obj, before=False):
    """Column values of ``obj``; with ``before`` the values as last loaded from the store."""
    state = inspect(obj)
    row = {}
    for attr in state.mapper.column_attrs:
        value = getattr(obj, attr.key)
        if before:
            history = state.attrs[attr.key].history
            if history.deleted:
                value = history.deleted[0]
        row[attr.key] = _serialize(value)
    return row


def _tracked(obj):
    return isinstance(obj, TRACKED_MODELS)


@event.listens_for(Session, 'after_flush')
def _capture_changes(session, flush_context):
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        if _tracked(obj):
            row = row_snapshot(obj)
            pending.append(ChangeEvent(
                table=obj.__tablename__, operation='insert', entity_id=str(obj.id),
                version=row['version'] or 1, row_after=row,
            ))
    for obj in session.dirty:
        if _tracked(obj) and session.is_modified(obj, include_collections=False):
            after = row_snapshot(obj)
            before = row_snapshot(obj, before=True)
            # The mapper writes the new version straight into the row, without history
            before['version'] = after['version'] - 1
            pending.append(ChangeEvent(
                table=obj.__tablename__, operation='update', entity_id=str(obj.id),
                version=after['version'], row_before=before, row_after=after,
            ))
    for obj in session.deleted:
        if _tracked(obj):
            before = row_snapshot(obj, before=True)
            pending.append(ChangeEvent(
                table=obj.__tablename__, operation='delete', entity_id=str(obj.id),
                version=(before['version'] or 0) + 1, row_before=before,
            ))


@event.listens_for(Session, 'after_commit')
def _publish_changes(session):
    for change in session.info.pop(_PENDING_KEY, []):
        change_feed.publish(change)


@event.listens_for(Session, 'after_rollback')
def _discard_changes(session):
    session.info.pop(_PENDING_KEY, None)


def transactional(func):
    """Commit on success, roll back on any failure and re-raise.

    Store outages surface as StoreUnavailableError so callers can retry;
    the coordinator never retries a write whose outcome is unknown. A
    version conflict (StaleDataError) means nothing was written, so the
    function is rerun up to WRITE_CONFLICT_ATTEMPTS times.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(current_app.config.get('WRITE_CONFLICT_ATTEMPTS', 3)))
        for attempt in range(attempts):
            try:
                result = func(*args, **kwargs)
                db.session.commit()
                return result
            except StaleDataError as exc:
                # Nothing was written; rerun against the rows as committed now
                db.session.rollback()
                if attempt == attempts - 1:
                    current_app.logger.error(
                        f"[ledger] {func.__name__} lost {attempts} version races in a row: {exc}"
                    )
                    raise StoreUnavailableError('Row kept changing during the write, retry later') from exc
                current_app.logger.info(
                    f"[ledger] {func.__name__} lost a version race, rerunning ({attempt + 1}/{attempts})"
                )
            except QuizError:
                db.session.rollback()
                raise
            except IntegrityError:
                db.session.rollback()
                raise
            except STORE_FAILURES as exc:
                db.session.rollback()
                current_app.logger.error(f"[ledger] {func.__name__} failed, store unavailable: {exc}")
                raise StoreUnavailableError() from exc
            except Exception as exc:
                current_app.logger.error(f"Transaction failed in {func.__name__}: {exc}", exc_info=True)
                db.session.rollback()
                raise

    return wrapper


def retry_read(func):
    """Retry a read-only ledger call with exponential backoff."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(current_app.config.get('READ_RETRY_ATTEMPTS', 3)))
        backoff = int(current_app.config.get('READ_RETRY_BACKOFF_MS', 50)) / 1000.0
        for attempt in range(attempts):
            try:
                return func(*args, **kwargs)
            except STORE_FAILURES as exc:
                db.session.rollback()
                if attempt == attempts - 1:
                    current_app.logger.error(
                        f"[ledger] read {func.__name__} failed after {attempts} attempts: {exc}"
                    )
                    raise StoreUnavailableError() from exc
                current_app.logger.warning(
                    f"[ledger] read {func.__name__} failed, attempt {attempt + 1}/{attempts}: {exc}"
                )
                time.sleep(backoff * (2 ** attempt))

    return wrapper


class KeyedLocks:
    """One in-process mutex per key (participant id, session id, ...)."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def get(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key):
        with self.get(key):
            yield

    def forget(self, keys):
        with self._guard:
            for key in keys:
                self._locks.pop(key, None)


def lock_row(model, entity_id):
    """SELECT ... FOR UPDATE on one row; returns None when it does not exist."""
    return (
        db.session.query(model)
        .filter(model.id == entity_id)
        .with_for_update(nowait=False)
        .populate_existing()
        .first()
    )


_SNAPSHOT_QUERIES = {
    'quiz_session': lambda: QuizSession.query.all(),
    'participant': lambda: Participant.query.order_by(Participant.created_at.desc()).all(),
    'topic': lambda: Topic.query.order_by(Topic.created_at).all(),
    'question': lambda: Question.query.order_by(Question.created_at).all(),
    'answer': lambda: Answer.query.order_by(Answer.created_at).all(),
}


@retry_read
def build_snapshot(tables):
    """Current rows of each table, in the same shape as change event rows."""
    if 'quiz_session' in tables:
        from quizroom.services.session_machine import ensure_session
        ensure_session()
    return {table: [row_snapshot(obj) for obj in _SNAPSHOT_QUERIES[table]()] for table in tables}
