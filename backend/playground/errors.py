"""Error taxonomy shared by the chat client and its storage."""


class PlaygroundError(Exception):
    """Base exception for chat client errors."""

    pass


class ValidationError(PlaygroundError):
    """A request was rejected before anything was sent."""

    pass


class SessionBusyError(ValidationError):
    """A request is already in flight for this session."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} already has a request in flight")
        self.session_id = session_id


class TransportError(PlaygroundError):
    """Network failure or non-success response from the gateway."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CancellationError(PlaygroundError):
    """The user aborted the request."""

    pass


class PersistenceError(PlaygroundError):
    """Durable storage could not be read or written."""

    pass
