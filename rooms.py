import logging
import threading
import time

logger = logging.getLogger(__name__)

DEFAULT_ROOM = 'public'


class Room:
    """A room code and the connections currently addressed by it"""

    def __init__(self, code, created_at):
        self.code = code
        self.created_at = created_at
        self.last_activity = created_at
        self.members = set()


class RoomMembership:
    """Tracks which room each connection occupies.

    Apart from the default room a connection is in exactly one room at a time.
    Rooms are created on first join and kept afterwards; idle_rooms() lists
    the empty ones so they can be evicted later.
    """

    def __init__(self, transport, default_room=DEFAULT_ROOM, clock=time.time):
        self.transport = transport
        self.default_room = default_room
        self._clock = clock
        self._lock = threading.RLock()
        self._rooms = {}
        self._current = {}  # sid -> room code
        self._room(default_room)

    def _room(self, code):
        room = self._rooms.get(code)
        if room is None:
            room = Room(code, self._clock())
            self._rooms[code] = room
            if code != self.default_room:
                logger.info(f"Room {code} created")
        return room

    def _move(self, sid, code):
        prior = self._current.get(sid)
        if prior == code:
            return prior

        # Transport first; bookkeeping only changes once both group calls went through
        self.transport.join_group(sid, code)
        if prior is not None:
            try:
                self.transport.leave_group(sid, prior)
            except Exception:
                self.transport.leave_group(sid, code)
                raise
            self._rooms[prior].members.discard(sid)

        room = self._room(code)
        room.members.add(sid)
        room.last_activity = self._clock()
        self._current[sid] = code
        return prior

    def connect(self, sid):
        with self._lock:
            self._move(sid, self.default_room)

    def join_room(self, sid, code):
        """Move sid into code and return the room it was in before."""
        with self._lock:
            return self._move(sid, code)

    def leave_room(self, sid, code):
        with self._lock:
            if code == self.default_room or self._current.get(sid) != code:
                return False
            self._move(sid, self.default_room)
            return True

    def disconnect(self, sid):
        # The transport drops its own group entries for a closed session.
        with self._lock:
            code = self._current.pop(sid, None)
            if code is not None:
                room = self._rooms[code]
                room.members.discard(sid)
                room.last_activity = self._clock()

    def is_connection(self, code):
        """True when code names a live connection's private room."""
        with self._lock:
            return code in self._current

    def room_of(self, sid):
        with self._lock:
            return self._current.get(sid)

    def members_of(self, code):
        with self._lock:
            room = self._rooms.get(code)
            return set(room.members) if room else set()

    def touch(self, code):
        with self._lock:
            room = self._rooms.get(code)
            if room is not None:
                room.last_activity = self._clock()

    def rooms(self):
        with self._lock:
            return list(self._rooms)

    def idle_rooms(self, idle_seconds, now=None):
        """Empty non-default rooms with no activity for idle_seconds."""
        now = self._clock() if now is None else now
        with self._lock:
            return [
                room.code for room in self._rooms.values()
                if room.code != self.default_room
                and not room.members
                and now - room.last_activity >= idle_seconds
            ]
