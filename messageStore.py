import json
import logging
import os
import threading

from errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)


class MessageStore:
    """Append-only message log kept in memory and mirrored to a JSON file.

    Every mutation runs under one lock and rewrites the file, so readers never
    see a half-applied change. A failed write raises PersistenceError but the
    record stays in memory; the next successful write carries it to disk.
    """

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()
        try:
            self._messages = self._load()
        except PersistenceError as e:
            logger.error(f"{e.message}; starting with an empty message log")
            self._set_aside()
            self._messages = []

    def _set_aside(self):
        # Keep the unreadable file out of the way of the next write
        corrupt_path = f"{self.path}.corrupt"
        try:
            os.replace(self.path, corrupt_path)
            logger.error(f"Moved unreadable message file to {corrupt_path}")
        except OSError as e:
            logger.error(f"Could not move {self.path} aside, it will be overwritten on the next write: {e}")

    # Load or create JSON log
    def _load(self):
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise PersistenceError(f"Could not read {self.path}: {e}")
        if not raw.strip():
            return []
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise PersistenceError(f"Corrupt message file {self.path}: {e}")
        if not isinstance(data, list):
            raise PersistenceError(f"Message file {self.path} does not hold a list")
        logger.info(f"Loaded {len(data)} messages from {self.path}")
        return data

    def _save(self):
        tmp_path = f"{self.path}.tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._messages, f, indent=4)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Could not write {self.path}: {e}")

    def append(self, message):
        with self._lock:
            message_id = message.get("messageId")
            if any(m.get("messageId") == message_id for m in self._messages):
                raise ValidationError(f"Duplicate messageId {message_id}")
            self._messages.append(dict(message))
            self._save()

    def get(self, message_id):
        with self._lock:
            for msg in self._messages:
                if msg.get("messageId") == message_id:
                    return dict(msg)
        return None

    def list_by_room(self, room):
        with self._lock:
            return [dict(msg) for msg in self._messages if msg.get("room") == room]

    def remove_by_id(self, message_id):
        """Drop the record with this id. Returns False when nothing matched."""
        with self._lock:
            remaining = [msg for msg in self._messages if msg.get("messageId") != message_id]
            if len(remaining) == len(self._messages):
                return False
            self._messages = remaining
            self._save()
            return True

    def clear_all(self):
        with self._lock:
            self._messages = []
            self._save()

    def __len__(self):
        with self._lock:
            return len(self._messages)
