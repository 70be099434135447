from flask_socketio import join_room, leave_room, emit
from flask import request, current_app
from quizroom import socketio
from quizroom.errors import QuizError
from quizroom.fanout import TABLES, change_feed
from quizroom.ledger import build_snapshot
from quizroom.services import registry
from typing import Dict, Any


# Socket context: sid -> {'tables': set, 'participant_id': str | None}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _ctx() -> Dict[str, Any]:
    return _sid_to_ctx.setdefault(_get_sid(), {'tables': set(), 'participant_id': None})


def _room(table: str) -> str:
    return f"changes:{table}"


def _tables_from(data):
    tables = (data or {}).get('tables') or list(TABLES)
    if isinstance(tables, str):
        tables = [tables]
    unknown = sorted(set(tables) - set(TABLES))
    if unknown:
        return None, unknown
    return list(dict.fromkeys(tables)), []


def handle_connect(auth=None):
    _ctx()
    emit('connected', {'message': 'Connected to /ws', 'tables': list(TABLES)})


def handle_disconnect(reason=None):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    participant_id = ctx.get('participant_id')
    if not participant_id:
        return
    # Another open socket for the same participant keeps them connected
    if any(c.get('participant_id') == participant_id for c in _sid_to_ctx.values()):
        return
    try:
        registry.set_connected(participant_id, False)
    except QuizError as exc:
        # Participant already wiped by a reset
        current_app.logger.info(f"[presence] disconnect for {participant_id} ignored: {exc.message}")


def handle_subscribe(data):
    """Join per-table rooms and send a full snapshot.

    Clients call this on every (re)connect: change events missed while
    disconnected are not replayed, the snapshot replaces local state.
    """
    tables, unknown = _tables_from(data)
    if unknown:
        emit('error', {'message': f"Unknown tables: {', '.join(unknown)}", 'tables': list(TABLES)})
        return
    ctx = _ctx()
    for table in tables:
        join_room(_room(table))
        ctx['tables'].add(table)
    try:
        snapshot = build_snapshot(tables)
    except QuizError as exc:
        emit('error', exc.to_dict())
        return
    emit('resync', {'tables': snapshot})


def handle_unsubscribe(data):
    tables, unknown = _tables_from(data)
    if unknown:
        emit('error', {'message': f"Unknown tables: {', '.join(unknown)}", 'tables': list(TABLES)})
        return
    ctx = _ctx()
    for table in tables:
        leave_room(_room(table))
        ctx['tables'].discard(table)
    emit('unsubscribed', {'tables': tables})


def handle_presence(data):
    participant_id = (data or {}).get('participant_id')
    if not participant_id:
        emit('error', {'message': 'participant_id is required'})
        return
    try:
        participant = registry.set_connected(participant_id, True)
    except QuizError as exc:
        emit('error', exc.to_dict())
        return
    _ctx()['participant_id'] = participant.id
    emit('presence', participant.to_dict())


def handle_ping(data):
    emit('pong', data or {})


def forward_change(event) -> None:
    """Change feed listener: push one committed change to its table room."""
    socketio.emit('change', event.to_dict(), to=_room(event.table), namespace='/ws')


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'subscribe': handle_subscribe,
        'unsubscribe': handle_unsubscribe,
        'presence': handle_presence,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for name, handler in handlers.items():
            socketio.on_event(name, handler, namespace=namespace)

    change_feed.add_listener(forward_change)
