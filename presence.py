import threading


class PresenceRegistry:
    """Who is online: one entry per logged-in connection, oldest login first."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries = {}  # sid -> {"username": ..., "time": ...}

    def on_login(self, sid, username, time):
        with self._lock:
            self._entries[sid] = {"username": username, "time": time}

    def on_disconnect(self, sid):
        with self._lock:
            return self._entries.pop(sid, None)

    def username_of(self, sid):
        with self._lock:
            entry = self._entries.get(sid)
            return entry["username"] if entry else None

    def sids_for(self, username):
        with self._lock:
            return [sid for sid, entry in self._entries.items() if entry["username"] == username]

    def snapshot(self):
        with self._lock:
            return [dict(entry) for entry in self._entries.values()]

    def __len__(self):
        with self._lock:
            return len(self._entries)
