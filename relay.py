"""
Room-scoped event relay.

Every inbound Socket.IO event becomes an InboundEvent and goes through
RelayEngine.dispatch, which updates the message log, presence and room state
and re-emits to the right audience. Room traffic only reaches members of that
room; presence updates and the bell go to everyone.
"""

import logging
import uuid
from collections import namedtuple
from datetime import datetime, timezone

from flask import request

from errors import NotFoundError, PersistenceError, ValidationError
from presence import PresenceRegistry
from rooms import DEFAULT_ROOM, RoomMembership

logger = logging.getLogger(__name__)


class C2SEvent:
    """Events sent by clients."""
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    USER_LOGIN = "userLogin"
    JOIN_ROOM = "joinRoom"
    LEAVE_ROOM = "leaveRoom"
    NEW_MESSAGE = "newMessage"
    DELETE_MESSAGE = "deleteMessage"
    BELL = "bell"

    ALL = (CONNECT, DISCONNECT, USER_LOGIN, JOIN_ROOM, LEAVE_ROOM, NEW_MESSAGE, DELETE_MESSAGE, BELL)
    LIFECYCLE = (CONNECT, DISCONNECT)


class S2CEvent:
    """Events emitted by the server."""
    BROADCAST_MESSAGE = "broadcastMessage"
    DELETE_MESSAGE = "deleteMessage"
    SYSTEM_MESSAGE = "systemMessage"
    RING_BELL = "ringBell"
    UPDATE_ONLINE_USERS = "updateOnlineUsers"
    RELAY_ERROR = "relayError"


InboundEvent = namedtuple("InboundEvent", ["sid", "name", "payload"], defaults=(None,))


def new_message_id():
    return uuid.uuid4().hex


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _required_string(data, key, label=None):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label or key} is required", details={"field": key})
    return value.strip()


def build_message(data, default_room=DEFAULT_ROOM):
    """Validate an inbound message payload and return the record to store.

    Text may come as ``text`` or the older ``message`` key. Exactly one of text
    or a file descriptor must be present.
    """
    if not isinstance(data, dict):
        raise ValidationError("Message payload must be an object")

    username = _required_string(data, "username")

    room = data.get("room") or default_room
    if not isinstance(room, str) or not room.strip():
        raise ValidationError("room must be a non-empty string", details={"field": "room"})

    message_id = data.get("messageId") or new_message_id()
    if not isinstance(message_id, str):
        raise ValidationError("messageId must be a string", details={"field": "messageId"})

    text = data.get("text")
    if text is None:
        text = data.get("message")
    file_info = data.get("file")

    if text is not None and file_info is not None:
        raise ValidationError("A message carries either text or a file, not both")

    message = {
        "messageId": message_id,
        "username": username,
        "room": room.strip(),
        "time": data.get("time") or utc_now_iso(),
        "color": data.get("color"),
    }

    if file_info is not None:
        if not isinstance(file_info, dict):
            raise ValidationError("file must be an object", details={"field": "file"})
        _required_string(file_info, "name", "file.name")
        _required_string(file_info, "path", "file.path")
        message["file"] = {
            "name": file_info["name"],
            "path": file_info["path"],
            "size": file_info.get("size"),
            "mimetype": file_info.get("mimetype"),
        }
    elif isinstance(text, str) and text.strip():
        message["text"] = text
    else:
        raise ValidationError("Message text or file is required", details={"field": "text"})

    return message


def _room_code(payload):
    # Clients send the bare code; {"room": code} is accepted as well.
    code = payload.get("room") if isinstance(payload, dict) else payload
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Room code is required", details={"field": "room"})
    return code.strip()


class SocketIOTransport:
    """Per-connection send/broadcast and room group primitives over Flask-SocketIO."""

    def __init__(self, socketio, namespace="/"):
        self.socketio = socketio
        self.namespace = namespace

    def _emit(self, event, payload, **kwargs):
        args = () if payload is None else (payload,)
        self.socketio.emit(event, *args, namespace=self.namespace, **kwargs)

    def send(self, sid, event, payload=None):
        self._emit(event, payload, to=sid)

    def broadcast(self, room, event, payload=None):
        self._emit(event, payload, to=room)

    def broadcast_all(self, event, payload=None):
        self._emit(event, payload)

    def join_group(self, sid, room):
        self.socketio.server.enter_room(sid, room, namespace=self.namespace)

    def leave_group(self, sid, room):
        self.socketio.server.leave_room(sid, room, namespace=self.namespace)


class RelayEngine:
    """Sole writer of the message log and presence registry.

    Handlers return the acknowledgement sent back to the emitting client.
    Failures are reported to that client only, never to a room.
    """

    def __init__(
        self,
        transport,
        store,
        presence=None,
        rooms=None,
        default_room=DEFAULT_ROOM,
        enforce_membership=True,
    ):
        self.transport = transport
        self.store = store
        self.default_room = default_room
        self.presence = presence if presence is not None else PresenceRegistry()
        self.rooms = rooms if rooms is not None else RoomMembership(transport, default_room)
        self.enforce_membership = enforce_membership
        self._handlers = {
            C2SEvent.CONNECT: self._on_connect,
            C2SEvent.DISCONNECT: self._on_disconnect,
            C2SEvent.USER_LOGIN: self._on_user_login,
            C2SEvent.JOIN_ROOM: self._on_join_room,
            C2SEvent.LEAVE_ROOM: self._on_leave_room,
            C2SEvent.NEW_MESSAGE: self._on_new_message,
            C2SEvent.DELETE_MESSAGE: self._on_delete_message,
            C2SEvent.BELL: self._on_bell,
        }

    # ------------------------------------------------------------------ wiring

    def register(self, socketio):
        """Bind every client event on socketio to dispatch."""

        def make_handler(name):
            def handler(data=None, *_):
                ack = self.dispatch(InboundEvent(request.sid, name, data))
                if name in C2SEvent.LIFECYCLE:
                    return None
                return ack
            handler.__name__ = f"on_{name}"
            return handler

        for name in C2SEvent.ALL:
            socketio.on(name)(make_handler(name))

        @socketio.on_error_default
        def on_error(e):
            event = getattr(request, "event", None) or {}
            logger.exception(f"Unhandled error in event {event.get('message')} from {request.sid}")
            self.transport.send(request.sid, S2CEvent.RELAY_ERROR, {
                "code": "internal_error",
                "message": "The server could not process this event.",
                "event": event.get("message"),
            })

    # ---------------------------------------------------------------- dispatch

    def dispatch(self, event):
        handler = self._handlers.get(event.name)
        try:
            if handler is None:
                raise ValidationError(f"Unknown event {event.name}")
            return handler(event.sid, event.payload)
        except ValidationError as e:
            logger.warning(f"Rejected {event.name} from {event.sid}: {e.message}")
            self.transport.send(event.sid, S2CEvent.RELAY_ERROR, dict(e.to_dict(), event=event.name))
            return dict(e.to_dict(), success=False)
        except NotFoundError as e:
            logger.debug(f"No-op {event.name} from {event.sid}: {e.message}")
            return dict(e.details or {}, success=True, noop=True)

    def _persist(self, sid, event_name, operation):
        """Run a store write; a failure is logged and told to the sender only."""
        try:
            return True, operation()
        except PersistenceError as e:
            logger.error(f"Persistence failed during {event_name}: {e.message}")
            if sid is not None:
                self.transport.send(sid, S2CEvent.RELAY_ERROR, dict(e.to_dict(), event=event_name))
            return False, None

    def _check_room(self, code):
        # Every connection also sits in a private room named after its sid
        if self.rooms.is_connection(code):
            raise ValidationError(f"Invalid room code {code}", details={"room": code})
        return code

    def _broadcast_presence(self):
        self.transport.broadcast_all(S2CEvent.UPDATE_ONLINE_USERS, self.presence.snapshot())

    # ---------------------------------------------------------------- handlers

    def _on_connect(self, sid, _payload):
        self.rooms.connect(sid)
        logger.info(f"Socket connected: {sid}")
        return {"success": True, "room": self.default_room}

    def _on_disconnect(self, sid, _payload):
        entry = self.presence.on_disconnect(sid)
        self.rooms.disconnect(sid)
        username = entry["username"] if entry else None
        logger.info(f"Socket disconnected: {sid} ({username or 'anonymous'})")
        self._broadcast_presence()
        return {"success": True}

    def _on_user_login(self, sid, payload):
        if not isinstance(payload, dict):
            raise ValidationError("Login payload must be an object")
        username = _required_string(payload, "username")
        if self.presence.username_of(sid) is not None:
            raise ValidationError("This connection is already logged in")
        login_time = payload.get("time") or utc_now_iso()
        self.presence.on_login(sid, username, login_time)
        logger.info(f"User {username} logged in on {sid}")
        self._broadcast_presence()
        return {"success": True, "username": username}

    def _on_join_room(self, sid, payload):
        code = self._check_room(_room_code(payload))
        prior = self.rooms.join_room(sid, code)
        logger.info(f"User {sid} joined room: {code} (was {prior})")
        if code == self.default_room:
            status = "You are now in Global Chat."
        else:
            status = f"You have joined room: {code}."
        self.transport.send(sid, S2CEvent.SYSTEM_MESSAGE, {"message": status, "room": code})
        return {"success": True, "room": code, "previousRoom": prior}

    def _on_leave_room(self, sid, payload):
        code = _room_code(payload)
        if not self.rooms.leave_room(sid, code):
            raise NotFoundError(f"{sid} is not in room {code}",
                                details={"room": self.rooms.room_of(sid)})
        logger.info(f"User {sid} left room: {code} and rejoined {self.default_room}.")
        self.transport.send(sid, S2CEvent.SYSTEM_MESSAGE, {
            "message": f"You left room: {code}. Now in Global Chat.",
            "room": self.default_room,
        })
        return {"success": True, "room": self.default_room}

    def _on_new_message(self, sid, payload):
        message = build_message(payload, self.default_room)
        self._check_room(message["room"])
        if self.enforce_membership and message["room"] != self.default_room \
                and self.rooms.room_of(sid) != message["room"]:
            raise ValidationError(f"Not a member of room {message['room']}", details={"room": message["room"]})
        persisted = self._publish(message, sid, C2SEvent.NEW_MESSAGE)
        return {"success": True, "messageId": message["messageId"], "persisted": persisted}

    def _on_delete_message(self, sid, payload):
        if not isinstance(payload, dict):
            raise ValidationError("Delete payload must be an object")
        message_id = _required_string(payload, "messageId")
        room = payload.get("room") or self.default_room
        self._check_room(room)

        persisted, removed = self._persist(sid, C2SEvent.DELETE_MESSAGE,
                                           lambda: self.store.remove_by_id(message_id))
        if persisted and not removed:
            logger.debug(f"Delete of unknown message {message_id} in {room}")
        # The notice goes out even when nothing was removed.
        self.transport.broadcast(room, S2CEvent.DELETE_MESSAGE, {"messageId": message_id, "room": room})
        return {"success": True, "messageId": message_id, "removed": bool(removed)}

    def _on_bell(self, sid, _payload):
        logger.info(f"Bell rung by {self.presence.username_of(sid) or sid}")
        self.transport.broadcast_all(S2CEvent.RING_BELL)
        return {"success": True}

    # ------------------------------------------------------------ shared paths

    def _publish(self, message, sid, event_name):
        # append claims the messageId under the store lock, so a duplicate is
        # rejected before anything is broadcast
        persisted, _ = self._persist(sid, event_name, lambda: self.store.append(message))
        self.rooms.touch(message["room"])
        self.transport.broadcast(message["room"], S2CEvent.BROADCAST_MESSAGE, message)
        return persisted

    def publish_upload(self, username, file_info, room=None, color=None):
        """Relay a stored upload as a file message on behalf of username.

        Returns (message, persisted). Raises ValidationError when the uploader
        has no live connection in a private target room.
        """
        message = build_message({
            "username": username,
            "color": color,
            "room": room,
            "file": file_info,
        }, self.default_room)
        self._check_room(message["room"])
        if self.enforce_membership and message["room"] != self.default_room:
            sids = self.presence.sids_for(username)
            if not any(self.rooms.room_of(s) == message["room"] for s in sids):
                raise ValidationError(f"Not a member of room {message['room']}", details={"room": message["room"]})
        persisted = self._publish(message, None, "upload")
        return message, persisted

    def history(self, room=None):
        return self.store.list_by_room(room or self.default_room)

    def clear_history(self, room=None):
        """Wipe every room's history. Only offered from the default room."""
        if room and room != self.default_room:
            raise ValidationError("Chat history can only be cleared from the default room")
        self.store.clear_all()
        logger.info("Chat history cleared")
