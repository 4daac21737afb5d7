from collections import defaultdict

import pytest

from chatApp import create_app
from config import TestingConfig
from messageStore import MessageStore
from relay import InboundEvent, RelayEngine


class FakeTransport:
    """Records everything the relay emits and delivers it to per-sid inboxes."""

    def __init__(self):
        self.groups = defaultdict(set)
        self.connected = set()
        self.inbox = defaultdict(list)
        self.broadcasts = []

    def send(self, sid, event, payload=None):
        self.inbox[sid].append((event, payload))

    def broadcast(self, room, event, payload=None):
        self.broadcasts.append((room, event, payload))
        for sid in self.groups[room]:
            self.inbox[sid].append((event, payload))

    def broadcast_all(self, event, payload=None):
        for sid in self.connected:
            self.inbox[sid].append((event, payload))

    def join_group(self, sid, room):
        self.connected.add(sid)
        self.groups[room].add(sid)

    def leave_group(self, sid, room):
        self.groups[room].discard(sid)

    def drop(self, sid):
        self.connected.discard(sid)
        for members in self.groups.values():
            members.discard(sid)

    def events(self, sid, name=None):
        return [payload for event, payload in self.inbox[sid] if name is None or event == name]

    def clear(self):
        self.inbox.clear()
        self.broadcasts.clear()


class Relay:
    """Drives a RelayEngine the way the Socket.IO layer would."""

    def __init__(self, engine, transport):
        self.engine = engine
        self.transport = transport

    def emit(self, sid, name, payload=None):
        return self.engine.dispatch(InboundEvent(sid, name, payload))

    def connect(self, sid, username=None):
        self.emit(sid, 'connect')
        if username:
            self.emit(sid, 'userLogin', {'username': username, 'time': '2024-01-01T00:00:00.000Z'})

    def disconnect(self, sid):
        self.emit(sid, 'disconnect')
        self.transport.drop(sid)


@pytest.fixture
def messages_file(tmp_path):
    return str(tmp_path / 'messages.json')


@pytest.fixture
def store(messages_file):
    return MessageStore(messages_file)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def relay(transport, store):
    return Relay(RelayEngine(transport, store), transport)


@pytest.fixture
def app(tmp_path):
    return create_app(
        TestingConfig,
        MESSAGES_FILE=str(tmp_path / 'messages.json'),
        UPLOAD_FOLDER=str(tmp_path / 'uploads'),
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def socketio(app):
    return app.extensions['socketio']


@pytest.fixture
def engine(app):
    return app.extensions['relay']


def register_and_login(client, username, password='secret'):
    client.post('/register', json={'username': username, 'password': password})
    return client.post('/login', json={'username': username, 'password': password})
