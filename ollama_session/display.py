"""Terminal rendering of a session transcript with rich."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.spinner import Spinner
from rich.syntax import Syntax
from rich.text import Text

from .session import SessionStatus
from .transcript import EventRole, TranscriptEvent

__all__ = [
    "ToolCallDisplay", "ModelPicker", "DisplayConfig",
    "default_status_message", "render_event", "render_transcript",
]

# ── Visual theme ───────────────────────────────────
ACCENT = "#7FA6D9"
DIM = "#6E7681"
TEXT = "#E6EDF3"
ERROR = "#F85149"
USER_LABEL = "bold #57DB9C"
TOOL_BORDER = "#30363D"


class ToolCallDisplay(Enum):
    """How much of a tool request or response to show."""
    NONE = 0
    EXISTS = 1
    NAME = 2
    DETAILS = 3

    @property
    def label(self) -> str:
        return {
            ToolCallDisplay.NONE: "Hidden",
            ToolCallDisplay.EXISTS: "Show when called",
            ToolCallDisplay.NAME: "Show name when called",
            ToolCallDisplay.DETAILS: "Show full details when called",
        }[self]

    @classmethod
    def from_name(cls, value: str) -> "ToolCallDisplay":
        return cls[str(value).strip().upper()]


class ModelPicker(Enum):
    """Which models the model picker offers."""
    NONE = "none"
    ALL = "all"
    TOOL_ENABLED = "tools"


def default_status_message(status: SessionStatus) -> str:
    return {
        SessionStatus.CALLING: "Using a tool...",
        SessionStatus.STARTING: "Preparing...",
        SessionStatus.WRITING: "Writing...",
        SessionStatus.THINKING: "Thinking...",
    }[status]


@dataclass
class DisplayConfig:
    show_thinking: bool = False
    tool_request_display: ToolCallDisplay = ToolCallDisplay.NONE
    tool_response_display: ToolCallDisplay = ToolCallDisplay.NONE
    status_message: Callable[[SessionStatus], str] = default_status_message

    @classmethod
    def from_config(cls, config) -> "DisplayConfig":
        return cls(
            show_thinking=config.show_thinking,
            tool_request_display=ToolCallDisplay.from_name(config.tool_request_display),
            tool_response_display=ToolCallDisplay.from_name(config.tool_response_display),
        )


def _tool_line(level: ToolCallDisplay, name: str, verb: str, anonymous: str,
               payload: str, title: str) -> Optional[RenderableType]:
    if level is ToolCallDisplay.NONE:
        return None
    if level is ToolCallDisplay.EXISTS:
        return Text(f"  ⚙ {anonymous}", style=DIM)
    line = Text.assemble(("  ⚙ ", ACCENT), (name, f"bold {TEXT}"), (f" {verb}", DIM))
    if level is ToolCallDisplay.NAME:
        return line
    return Panel(
        Syntax(payload, "json", word_wrap=True, background_color="default"),
        title=f"[{DIM}]{title}[/{DIM}] [bold {TEXT}]{name}[/bold {TEXT}]",
        title_align="left",
        border_style=TOOL_BORDER,
        padding=(0, 1),
    )


def render_event(event: TranscriptEvent, config: DisplayConfig) -> Optional[RenderableType]:
    """Renderable for one event, or ``None`` when the config hides it."""
    if event.tool_request is not None:
        req = event.tool_request
        return _tool_line(config.tool_request_display, req.name, "called",
                          "Called a tool", req.arguments, "request")
    if event.tool_response is not None:
        resp = event.tool_response
        return _tool_line(config.tool_response_display, resp.name, "responded",
                          "Tool responded", resp.response, "response")

    if event.role is EventRole.USER:
        return Group(Text(event.speaker, style=USER_LABEL), Text(event.content, style=TEXT))

    parts: List[RenderableType] = []
    if config.show_thinking and event.thinking.strip():
        parts.append(Text(event.thinking.strip(), style=f"italic {DIM}"))
    if event.content.strip():
        parts.append(event.content_styled)
    if not parts:
        return None
    return Group(Text(event.speaker, style=f"bold {ACCENT}"), *parts)


def render_transcript(events: Iterable[TranscriptEvent], config: DisplayConfig,
                      status: Optional[SessionStatus] = None) -> RenderableType:
    """All visible events, plus a spinner line when ``status`` is given."""
    rendered: List[RenderableType] = []
    for event in events:
        item = render_event(event, config)
        if item is not None:
            if rendered:
                rendered.append(Text(""))
            rendered.append(item)
    if status is not None:
        rendered.append(Spinner("dots", text=Text(config.status_message(status), style=DIM),
                                style=ACCENT))
    return Group(*rendered)
