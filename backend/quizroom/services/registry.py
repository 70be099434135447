"""Participant registry: identity, team, connectivity and status."""
from typing import Dict, Iterable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quizroom import db
from quizroom.errors import NotFoundError, TeamRequiredError, ValidationError
from quizroom.ledger import transactional, retry_read, lock_row
from quizroom.models import Participant, PARTICIPANT_STATUSES, STATUS_WAITING, utcnow

DEFAULT_TEAMS = ('A', 'B')


def configured_teams():
    return tuple(current_app.config.get('QUIZ_TEAMS') or DEFAULT_TEAMS)


def _clean_team(team):
    teams = configured_teams()
    value = str(team).strip()
    # Accept any casing of a configured identifier
    for candidate in teams:
        if candidate.lower() == value.lower():
            return candidate
    raise ValidationError(f'Unknown team {team!r}', teams=list(teams))


def _clean_key(external_key):
    key = (external_key or '').strip() if isinstance(external_key, str) else ''
    if not key:
        raise ValidationError('external_key is required')
    if len(key) > 64:
        raise ValidationError('external_key must be at most 64 characters')
    return key


def _get_participant(participant_id) -> Participant:
    participant = db.session.get(Participant, participant_id) if participant_id else None
    if participant is None:
        raise NotFoundError('participant', participant_id)
    return participant


def _lock_participant(participant_id) -> Participant:
    participant = lock_row(Participant, participant_id) if participant_id else None
    if participant is None:
        raise NotFoundError('participant', participant_id)
    return participant


@transactional
def _login(key, team):
    participant = (
        Participant.query.filter_by(external_key=key)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if participant is not None:
        # First registration wins the team; a team argument here is ignored
        participant.connected = True
        participant.last_seen = utcnow()
        current_app.logger.info(f"[login] resumed participant {participant.id} key={key}")
        return participant, False

    if not team:
        raise TeamRequiredError(key, configured_teams())

    now = utcnow()
    participant = Participant(
        external_key=key,
        team=_clean_team(team),
        status=STATUS_WAITING,
        score=0,
        connected=True,
        last_seen=now,
        created_at=now,
    )
    db.session.add(participant)
    db.session.flush()
    current_app.logger.info(f"[login] created participant {participant.id} key={key} team={participant.team}")
    return participant, True


def login(external_key, team=None):
    """Register or resume the participant for ``external_key``.

    Returns ``(participant, created)``. A new key without a team raises
    TeamRequiredError so the caller can prompt for one and call again.
    """
    key = _clean_key(external_key)
    try:
        return _login(key, team)
    except IntegrityError:
        # Lost a race with a concurrent first login for the same key
        current_app.logger.info(f"[login] concurrent registration for key={key}, resuming")
        return _login(key, team)


@retry_read
def get_participant(participant_id) -> Participant:
    return _get_participant(participant_id)


@retry_read
def list_participants():
    """All participants, newest first."""
    return Participant.query.order_by(Participant.created_at.desc(), Participant.id).all()


@transactional
def set_status(participant_id, status) -> Participant:
    """Direct status write; no transition rules beyond the enum."""
    if status not in PARTICIPANT_STATUSES:
        raise ValidationError(f'Invalid status {status!r}', statuses=list(PARTICIPANT_STATUSES))
    participant = _lock_participant(participant_id)
    participant.status = status
    participant.last_seen = utcnow()
    return participant


@transactional
def set_connected(participant_id, connected: bool) -> Participant:
    participant = _lock_participant(participant_id)
    participant.connected = bool(connected)
    participant.last_seen = utcnow()
    current_app.logger.info(f"[presence] participant {participant.id} connected={participant.connected}")
    return participant


def aggregate_teams(participants: Iterable, teams: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, int]]:
    """Fold participants into ``{team: {'score': total, 'count': members}}``.

    Every configured team is present even with no members. Ties are left
    as they are; picking a winner is up to the presentation layer.
    """
    if teams is None:
        teams = configured_teams()
    totals = {team: {'score': 0, 'count': 0} for team in teams}
    for p in participants:
        team = p['team'] if isinstance(p, dict) else p.team
        score = p['score'] if isinstance(p, dict) else p.score
        bucket = totals.setdefault(team, {'score': 0, 'count': 0})
        bucket['score'] += score or 0
        bucket['count'] += 1
    return totals


def leading_team(totals: Dict[str, Dict[str, int]]):
    """Team with the strictly highest score, or None on a tie or empty board."""
    if not totals:
        return None
    best = max(bucket['score'] for bucket in totals.values())
    leaders = [team for team, bucket in totals.items() if bucket['score'] == best]
    return leaders[0] if len(leaders) == 1 else None


@retry_read
def team_scoreboard():
    totals = aggregate_teams(Participant.query.all())
    return {'teams': totals, 'leader': leading_team(totals)}
