"""UI-facing conversation transcript: one event per visible turn."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional

from rich.text import Text

from .markdown import render_inline

__all__ = [
    "EventRole", "ToolRequestPart", "ToolResponsePart",
    "TranscriptEvent", "Transcript",
]


class EventRole(Enum):
    MODEL = "model"
    USER = "user"
    TOOL = "tool"


@dataclass
class ToolRequestPart:
    """Tool name plus the JSON-formatted arguments the model sent."""
    name: str
    arguments: str


@dataclass
class ToolResponsePart:
    """Tool name plus the JSON-formatted result (or the failure text)."""
    name: str
    response: str


class TranscriptEvent:
    """A single visible turn: user input, model output, or a tool exchange.

    ``thinking`` and ``content`` are accumulators. Assigning ``content`` (also
    via ``+=``) re-renders ``content_styled``. Once ``final`` is set no further
    text may be folded into the event.
    """

    def __init__(self, role: EventRole = EventRole.MODEL, model_name: str = "",
                 content: str = "", thinking: str = "",
                 tool_request: Optional[ToolRequestPart] = None,
                 tool_response: Optional[ToolResponsePart] = None):
        self.id = uuid.uuid4()
        self.role = role
        self.model_name = model_name
        self.thinking = thinking
        self.tool_request = tool_request
        self.tool_response = tool_response
        self.final = False
        self._content = ""
        self.content_styled = Text()
        self.content = content

    @property
    def content(self) -> str:
        return self._content

    @content.setter
    def content(self, value: str):
        self._content = value
        self.content_styled = render_inline(value)

    @property
    def is_tool(self) -> bool:
        return self.tool_request is not None or self.tool_response is not None

    @property
    def speaker(self) -> str:
        if self.role is EventRole.USER:
            return "You"
        if self.role is EventRole.TOOL:
            return "Tool"
        return self.model_name

    def __repr__(self) -> str:
        kind = "tool_request" if self.tool_request else "tool_response" if self.tool_response else "text"
        return (f"TranscriptEvent(role={self.role.value}, kind={kind}, "
                f"final={self.final}, content={self._content[:40]!r})")


@dataclass
class Transcript:
    """Ordered, append-mostly list of events.

    Mutated only by the reconciler while a query runs; readers should work on
    :meth:`snapshot`.
    """
    events: List[TranscriptEvent] = field(default_factory=list)

    def append(self, event: TranscriptEvent) -> TranscriptEvent:
        self.events.append(event)
        return event

    def mark_last_final(self) -> None:
        if self.events:
            self.events[-1].final = True

    @property
    def last(self) -> Optional[TranscriptEvent]:
        return self.events[-1] if self.events else None

    def snapshot(self) -> List[TranscriptEvent]:
        return list(self.events)

    def clear(self) -> None:
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[TranscriptEvent]:
        return iter(self.events)

    def __getitem__(self, index):
        return self.events[index]
