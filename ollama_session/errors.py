"""Structured error types for the session engine."""


class SessionError(Exception):
    """Base error for all session operations."""

    user_cancelled = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class OllamaConnectionError(SessionError, ConnectionError):
    """The streaming connection could not be opened or completed."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class ProtocolError(SessionError):
    """A streamed line was not UTF-8 or did not match the chunk schema."""

    def __init__(self, message: str, line: bytes = None):
        self.line = line
        super().__init__(message)


class QueryCancelled(SessionError):
    """Raised when a cancellation request is observed inside the query loop."""

    user_cancelled = True

    def __init__(self):
        super().__init__("User cancelled")


class ToolFailure(SessionError):
    """A tool was not registered, or its callback produced no usable result."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"{tool_name} error: {message}")
