from quizroom import db, socketio
from quizroom.models import Participant


def _names(received):
    return [pkt['name'] for pkt in received]


def _args(received, name):
    return [pkt['args'][0] for pkt in received if pkt['name'] == name]


def _login(client, key, team='A'):
    res = client.post('/api/quiz/participants/login', json={'external_key': key, 'team': team})
    return res.get_json()['participant']


def test_socket_connect(sio_client):
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert 'connected' in _names(received)


def test_subscribe_sends_snapshot(sio_client, client):
    pid = _login(client, 'snap')['id']
    sio_client.get_received('/ws')

    sio_client.emit('subscribe', {'tables': ['participant']}, namespace='/ws')
    received = sio_client.get_received('/ws')
    snapshots = _args(received, 'resync')
    assert len(snapshots) == 1
    assert [row['id'] for row in snapshots[0]['tables']['participant']] == [pid]


def test_subscribe_unknown_table(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('subscribe', {'tables': ['scores']}, namespace='/ws')
    errors = _args(sio_client.get_received('/ws'), 'error')
    assert errors and 'scores' in errors[0]['message']


def test_change_events_follow_commits(sio_client, client):
    sio_client.emit('subscribe', {'tables': ['participant']}, namespace='/ws')
    sio_client.get_received('/ws')

    participant = _login(client, 'live', 'B')
    client.post(f"/api/quiz/participants/{participant['id']}/status", json={'status': 'answering'})

    changes = _args(sio_client.get_received('/ws'), 'change')
    mine = [c for c in changes if c['id'] == participant['id']]
    assert [c['operation'] for c in mine] == ['insert', 'update']
    assert mine[1]['row_after']['status'] == 'answering'
    assert mine[1]['version'] > mine[0]['version']


def test_unsubscribe_stops_changes(sio_client, client):
    sio_client.emit('subscribe', {'tables': ['participant']}, namespace='/ws')
    sio_client.emit('unsubscribe', {'tables': ['participant']}, namespace='/ws')
    sio_client.get_received('/ws')

    _login(client, 'quiet')
    assert 'change' not in _names(sio_client.get_received('/ws'))


def test_presence_and_disconnect(flask_app, client):
    participant = _login(client, 'present')
    client.post(f"/api/quiz/participants/{participant['id']}/logout")

    socket = socketio.test_client(flask_app, namespace='/ws')
    socket.emit('presence', {'participant_id': participant['id']}, namespace='/ws')
    presence = _args(socket.get_received('/ws'), 'presence')
    assert presence[0]['connected'] is True

    socket.disconnect(namespace='/ws')
    db.session.expire_all()
    assert db.session.get(Participant, participant['id']).connected is False


def test_second_socket_keeps_participant_connected(flask_app, client):
    participant = _login(client, 'tabs')
    first = socketio.test_client(flask_app, namespace='/ws')
    second = socketio.test_client(flask_app, namespace='/ws')
    first.emit('presence', {'participant_id': participant['id']}, namespace='/ws')
    second.emit('presence', {'participant_id': participant['id']}, namespace='/ws')

    first.disconnect(namespace='/ws')
    db.session.expire_all()
    assert db.session.get(Participant, participant['id']).connected is True

    second.disconnect(namespace='/ws')
    db.session.expire_all()
    assert db.session.get(Participant, participant['id']).connected is False


def test_presence_unknown_participant(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('presence', {'participant_id': 'ghost'}, namespace='/ws')
    errors = _args(sio_client.get_received('/ws'), 'error')
    assert errors[0]['code'] == 'not_found'


def test_ping(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'t': 1}, namespace='/ws')
    assert _args(sio_client.get_received('/ws'), 'pong') == [{'t': 1}]
