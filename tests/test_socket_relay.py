"""End-to-end relay behaviour through the Flask-SocketIO test client."""

from conftest import register_and_login


def _named(received, name):
    return [r['args'][0] if r['args'] else None for r in received if r['name'] == name]


def _login(sc, username):
    sc.emit('userLogin', {'username': username, 'time': '2024-01-01T00:00:00.000Z'})


def test_private_room_scenario(app, socketio, client):
    a = socketio.test_client(app)
    b = socketio.test_client(app)
    _login(a, 'alice')
    a.emit('joinRoom', 'R1')
    _login(b, 'bob')
    a.get_received()
    b.get_received()

    ack = a.emit('newMessage', {'username': 'alice', 'text': 'hi', 'room': 'R1', 'color': '#0f0'}, callback=True)
    assert ack['success'] is True

    assert [m['text'] for m in _named(a.get_received(), 'broadcastMessage')] == ['hi']
    assert _named(b.get_received(), 'broadcastMessage') == []

    register_and_login(client, 'carol')
    c = socketio.test_client(app, flask_test_client=client)
    c.emit('joinRoom', 'R1')
    notices = _named(c.get_received(), 'systemMessage')
    assert notices == [{'message': 'You have joined room: R1.', 'room': 'R1'}]

    history = client.get('/messages?room=R1').get_json()
    assert history['success'] is True
    assert [(m['username'], m['text'], m['room']) for m in history['messages']] == [('alice', 'hi', 'R1')]
    assert client.get('/messages').get_json()['messages'] == []


def test_join_then_join_again_only_reaches_latest_room(app, socketio):
    a = socketio.test_client(app)
    b = socketio.test_client(app)
    a.emit('joinRoom', 'ABC123')
    a.emit('joinRoom', 'XYZ999')
    b.emit('joinRoom', 'ABC123')
    _login(b, 'bob')
    a.get_received()

    b.emit('newMessage', {'username': 'bob', 'text': 'anyone?', 'room': 'ABC123'})
    assert _named(a.get_received(), 'broadcastMessage') == []

    c = socketio.test_client(app)
    c.emit('joinRoom', 'XYZ999')
    c.emit('newMessage', {'username': 'carl', 'text': 'here', 'room': 'XYZ999'})
    assert [m['text'] for m in _named(a.get_received(), 'broadcastMessage')] == ['here']


def test_public_delete_reaches_everyone_in_public(app, socketio, engine):
    a = socketio.test_client(app)
    b = socketio.test_client(app)
    outsider = socketio.test_client(app)
    outsider.emit('joinRoom', 'R7')
    _login(a, 'alice')
    a.emit('newMessage', {'username': 'alice', 'text': 'delete me', 'messageId': 'm1'})
    for sc in (a, b, outsider):
        sc.get_received()

    b.emit('deleteMessage', {'messageId': 'm1', 'room': 'public'})

    assert _named(a.get_received(), 'deleteMessage') == [{'messageId': 'm1', 'room': 'public'}]
    assert _named(b.get_received(), 'deleteMessage') == [{'messageId': 'm1', 'room': 'public'}]
    assert _named(outsider.get_received(), 'deleteMessage') == []
    assert engine.history('public') == []


def test_bell_rings_everywhere(app, socketio):
    clients = [socketio.test_client(app) for _ in range(3)]
    clients[1].emit('joinRoom', 'R1')
    clients[2].emit('joinRoom', 'R2')
    for sc in clients:
        sc.get_received()

    clients[2].emit('bell')

    for sc in clients:
        assert [r['name'] for r in sc.get_received()] == ['ringBell']


def test_presence_updates_on_disconnect(app, socketio):
    a = socketio.test_client(app)
    b = socketio.test_client(app)
    _login(a, 'alice')
    _login(b, 'bob')
    a.get_received()

    b.disconnect()

    updates = _named(a.get_received(), 'updateOnlineUsers')
    assert updates[-1] == [{'username': 'alice', 'time': '2024-01-01T00:00:00.000Z'}]


def test_invalid_event_reported_to_sender_only(app, socketio):
    a = socketio.test_client(app)
    b = socketio.test_client(app)
    a.get_received()
    b.get_received()

    ack = a.emit('newMessage', {'text': 'who am i'}, callback=True)

    assert ack['success'] is False
    errors = _named(a.get_received(), 'relayError')
    assert errors[0]['code'] == 'validation_error'
    assert errors[0]['event'] == 'newMessage'
    assert b.get_received() == []


def test_separate_apps_do_not_share_state(app, socketio, tmp_path):
    from chatApp import create_app
    from config import TestingConfig

    other = create_app(TestingConfig, MESSAGES_FILE=str(tmp_path / 'other.json'),
                       UPLOAD_FOLDER=str(tmp_path / 'other-uploads'))
    a = socketio.test_client(app)
    _login(a, 'alice')

    assert other.extensions['relay'].presence.snapshot() == []
    assert len(app.extensions['relay'].presence) == 1

def _connect(app, socketio, engine):
    before = engine.rooms.members_of('public')
    sc = socketio.test_client(app)
    (sid,) = engine.rooms.members_of('public') - before
    return sc, sid


def test_cannot_join_another_connections_room(app, socketio, engine):
    victim, victim_sid = _connect(app, socketio, engine)
    spy, spy_sid = _connect(app, socketio, engine)

    ack = spy.emit('joinRoom', victim_sid, callback=True)

    assert ack['code'] == 'validation_error'
    assert _named(spy.get_received(), 'relayError')[0]['event'] == 'joinRoom'
    assert engine.rooms.room_of(spy_sid) == 'public'
    assert engine.rooms.members_of(victim_sid) == set()


def test_private_notices_survive_rejected_own_room_join(app, socketio, engine):
    sc, sid = _connect(app, socketio, engine)
    sc.emit('joinRoom', sid)
    sc.emit('joinRoom', 'R1')
    sc.get_received()

    ack = sc.emit('newMessage', {'text': 'no author', 'room': 'R1'}, callback=True)

    assert ack['success'] is False
    assert _named(sc.get_received(), 'relayError')[0]['code'] == 'validation_error'


def test_app_starts_with_corrupt_message_file(tmp_path):
    from chatApp import create_app
    from config import TestingConfig

    path = tmp_path / 'messages.json'
    path.write_text('{not json')
    app = create_app(TestingConfig, MESSAGES_FILE=str(path), UPLOAD_FOLDER=str(tmp_path / 'uploads'))
    socketio = app.extensions['socketio']

    a = socketio.test_client(app)
    b = socketio.test_client(app)
    b.get_received()
    ack = a.emit('newMessage', {'username': 'alice', 'text': 'still here'}, callback=True)

    assert ack['persisted'] is True
    assert [m['text'] for m in _named(b.get_received(), 'broadcastMessage')] == ['still here']
    assert (tmp_path / 'messages.json.corrupt').exists()
    assert [m['text'] for m in app.extensions['relay'].history('public')] == ['still here']
