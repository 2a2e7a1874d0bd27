"""ollama-session: a streaming chat session engine for Ollama."""

__version__ = "0.3.0"

from .discovery import list_models
from .errors import OllamaConnectionError, ProtocolError, QueryCancelled, SessionError, ToolFailure
from .session import OllamaSession, QueryHandle, QueryOutcome, QueryResult, SessionStatus
from .tools import ToolDefinition, object_schema, prop, tool
from .transcript import EventRole, Transcript, TranscriptEvent

__all__ = [
    "__version__",
    "OllamaSession", "QueryHandle", "QueryOutcome", "QueryResult", "SessionStatus",
    "ToolDefinition", "tool", "prop", "object_schema",
    "Transcript", "TranscriptEvent", "EventRole",
    "SessionError", "OllamaConnectionError", "ProtocolError", "QueryCancelled", "ToolFailure",
    "list_models",
]
