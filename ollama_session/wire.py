"""Wire schema for Ollama's chat, tags and show endpoints.

Every type here is a plain dataclass with ``to_dict()`` / ``from_dict()`` that
maps between snake_case JSON names and Python attributes. A streamed line that
does not match :class:`Chunk` raises :class:`~ollama_session.errors.ProtocolError`.
Caller-typed tool arguments and results go through pydantic, see
:func:`to_wire` and :func:`decode_args`.
"""

import functools
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, PydanticUserError, create_model

from .errors import ProtocolError

__all__ = [
    "Role", "ToolCall", "WireMessage", "ChatRequest", "MessageChunk", "Chunk",
    "ModelTag", "TagResponse", "ShowModelResponse",
    "to_snake_case", "to_wire", "decode_args", "dumps_compact", "dumps_pretty",
]

UNEXPECTED_DATA = "Ollama sent unexpected data."
UNDECODABLE_LINE = "Ollama disconnected."

_ACRONYM_BOUNDARY_RE = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_BOUNDARY_RE = re.compile(r"([a-z0-9])([A-Z])")


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ── Value conversion ──────────────────────────────


def to_snake_case(name: str) -> str:
    """``temperatureUnit`` -> ``temperature_unit``; snake_case passes through."""
    name = _ACRONYM_BOUNDARY_RE.sub(r"\1_\2", name)
    return _CAMEL_BOUNDARY_RE.sub(r"\1_\2", name).lower()


_WIRE_CONFIG = ConfigDict(
    alias_generator=to_snake_case,
    extra="forbid",  # unknown argument names are an error, not dropped
    arbitrary_types_allowed=True,
)


@functools.lru_cache(maxsize=None)
def _envelope(value_type: Any) -> Type[BaseModel]:
    """A one-field model whose config reaches every plain dataclass inside ``value_type``."""
    return create_model("WireValue", __config__=_WIRE_CONFIG, value=(value_type, ...))


def to_wire(value: Any) -> Any:
    """Convert a caller value into JSON-compatible data.

    Dataclass field names are emitted in snake_case, mapping keys are kept as
    given, enums become their values and tuples become lists. Raises
    ``TypeError`` for anything JSON cannot represent.
    """
    try:
        envelope = _envelope(type(value)).model_construct(value=value)
        return envelope.model_dump(mode="json", by_alias=True)["value"]
    except (ValueError, PydanticUserError) as e:
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable: {e}") from e


def decode_args(data: Any, args_type: Optional[Any] = None) -> Any:
    """Build ``args_type`` from snake_case wire data.

    ``args_type=None`` keeps the decoded JSON as-is. Otherwise the data is
    validated with pydantic: dataclass fields are matched by their snake_case
    name at any depth, and enums, tuples and mappings of dataclasses come back
    as the annotated types, so ``decode_args(to_wire(a), type(a)) == a``.
    Unknown or missing fields raise :class:`pydantic.ValidationError`.
    """
    if args_type is None:
        return data
    return _envelope(args_type).model_validate({"value": data}).value


def dumps_compact(value: Any) -> str:
    """JSON text as sent to the service."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def dumps_pretty(value: Any) -> str:
    """Indented JSON text for the transcript."""
    return json.dumps(value, ensure_ascii=False, indent=2)


# ── Chat messages ─────────────────────────────────


@dataclass
class ToolCall:
    """A model-requested tool invocation with decoded arguments."""
    index: int
    name: str
    arguments: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "function": {
                "index": self.index,
                "name": self.name,
                "arguments": to_wire(self.arguments),
            }
        }

    @classmethod
    def from_dict(cls, data: Any, position: int = 0,
                  args_type: Optional[type] = None) -> "ToolCall":
        """Decode one ``{"function": {...}}`` entry of a chunk's ``tool_calls``."""
        if not isinstance(data, dict) or not isinstance(data.get("function"), dict):
            raise ProtocolError(UNEXPECTED_DATA)
        fn = data["function"]
        name = fn.get("name")
        index = fn.get("index", position)
        if not isinstance(name, str) or not isinstance(index, int) or isinstance(index, bool):
            raise ProtocolError(UNEXPECTED_DATA)
        try:
            arguments = decode_args(fn.get("arguments", {}), args_type)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"{UNEXPECTED_DATA} ({name}: {e})") from e
        return cls(index=index, name=name, arguments=arguments)


@dataclass
class WireMessage:
    role: Role
    thinking: Optional[str] = None
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def is_empty_assistant(self) -> bool:
        """True for an assistant turn that nothing was ever folded into."""
        return (
            self.role is Role.ASSISTANT
            and not self.tool_calls
            and not self.content
            and not self.thinking
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role.value}
        if self.thinking is not None:
            data["thinking"] = self.thinking
        if self.content is not None:
            data["content"] = self.content
        if self.tool_name is not None:
            data["tool_name"] = self.tool_name
        if self.tool_calls is not None:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return data


@dataclass
class ChatRequest:
    model: str
    messages: List[WireMessage]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    stream: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "tools": list(self.tools),
            "stream": self.stream,
        }


# ── Streamed chunks ───────────────────────────────


@dataclass
class MessageChunk:
    """Partial message: ``None`` means the delta is absent from this chunk."""
    thinking: Optional[str] = None
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


@dataclass
class Chunk:
    message: MessageChunk
    done: bool

    @classmethod
    def from_line(cls, line: bytes, args_type: Optional[type] = None) -> "Chunk":
        """Decode one NDJSON line of a streaming chat response."""
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(UNDECODABLE_LINE, line) from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProtocolError(UNEXPECTED_DATA, line) from e
        try:
            return cls.from_dict(data, args_type)
        except ProtocolError as e:
            e.line = line
            raise

    @classmethod
    def from_dict(cls, data: Any, args_type: Optional[type] = None) -> "Chunk":
        if not isinstance(data, dict):
            raise ProtocolError(UNEXPECTED_DATA)
        if "error" in data and "message" not in data:
            raise ProtocolError(f"{UNEXPECTED_DATA} ({data['error']})")
        message = data.get("message")
        done = data.get("done")
        if not isinstance(message, dict) or not isinstance(done, bool):
            raise ProtocolError(UNEXPECTED_DATA)

        thinking = message.get("thinking")
        content = message.get("content")
        for value in (thinking, content):
            if value is not None and not isinstance(value, str):
                raise ProtocolError(UNEXPECTED_DATA)

        raw_calls = message.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise ProtocolError(UNEXPECTED_DATA)
        tool_calls = [
            ToolCall.from_dict(raw, position, args_type)
            for position, raw in enumerate(raw_calls)
        ]
        return cls(
            message=MessageChunk(thinking=thinking, content=content, tool_calls=tool_calls),
            done=done,
        )


# ── Model discovery ───────────────────────────────


@dataclass
class ModelTag:
    name: str
    size: int = 0


@dataclass
class TagResponse:
    models: List[ModelTag]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TagResponse":
        return cls(models=[
            ModelTag(name=m["name"], size=m.get("size", 0))
            for m in data["models"]
        ])


@dataclass
class ShowModelResponse:
    capabilities: List[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShowModelResponse":
        return cls(capabilities=list(data.get("capabilities") or []))

    def supports_tools(self) -> bool:
        return "tools" in self.capabilities
