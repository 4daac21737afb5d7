"""
Relay error types.

ValidationError is reported to the sending connection only, PersistenceError is
logged and never blocks live delivery, NotFoundError is absorbed as a no-op.
"""


class RelayError(Exception):
    def __init__(self, code, message, details=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(RelayError):
    def __init__(self, message, details=None):
        super().__init__("validation_error", message, details)


class PersistenceError(RelayError):
    def __init__(self, message, details=None):
        super().__init__("persistence_error", message, details)


class NotFoundError(RelayError):
    def __init__(self, message, details=None):
        super().__init__("not_found", message, details)
