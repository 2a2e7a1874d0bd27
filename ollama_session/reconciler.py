"""Fold streamed deltas into the wire message log and the transcript.

The reconciler answers one question per delta: append to the current assistant
message / transcript event, or start a new one?

Message log: a content or thinking delta lands on the last wire message only
when it is an assistant message without tool calls; otherwise a fresh, empty
assistant message is appended first.

Transcript: a delta lands on the last event only while that event is an open
(non-final) model event that is not a tool exchange. Starting any new event
finalizes the previous tail, as do user messages and tool calls.
Whitespace-only content never opens an event by itself; it is held back and
becomes the prefix of the next model event.
"""

from typing import List, Optional

from .logger import get_logger
from .transcript import (
    EventRole, ToolRequestPart, ToolResponsePart, Transcript, TranscriptEvent,
)
from .wire import Role, ToolCall, WireMessage, dumps_compact, dumps_pretty, to_wire

__all__ = ["MessageReconciler"]

_log = get_logger(__name__)


class MessageReconciler:
    """Owns every mutation of a session's ``messages`` and ``transcript``."""

    def __init__(self, messages: List[WireMessage], transcript: Transcript,
                 model_name: str = ""):
        self.messages = messages
        self.transcript = transcript
        self.model_name = model_name
        self._pending_whitespace = ""

    # ── Tail helpers ─────────────────────────────

    def _assistant_tail(self) -> WireMessage:
        tail = self.messages[-1] if self.messages else None
        if tail is None or tail.role is not Role.ASSISTANT or tail.has_tool_calls():
            tail = WireMessage(role=Role.ASSISTANT, thinking="", content="")
            self.messages.append(tail)
        return tail

    def _open_model_event(self) -> Optional[TranscriptEvent]:
        last = self.transcript.last
        if last is None or last.final or last.role is not EventRole.MODEL or last.is_tool:
            return None
        return last

    def _start_model_event(self) -> TranscriptEvent:
        self.transcript.mark_last_final()
        event = TranscriptEvent(role=EventRole.MODEL, model_name=self.model_name,
                                content=self._pending_whitespace)
        self._pending_whitespace = ""
        return self.transcript.append(event)

    # ── Deltas ───────────────────────────────────

    def add_user(self, text: str) -> TranscriptEvent:
        self._pending_whitespace = ""
        self.messages.append(WireMessage(role=Role.USER, content=text))
        self.transcript.mark_last_final()
        return self.transcript.append(
            TranscriptEvent(role=EventRole.USER, model_name=self.model_name, content=text)
        )

    def add_content(self, delta: Optional[str]) -> None:
        if not delta:
            return
        tail = self._assistant_tail()
        tail.content = (tail.content or "") + delta

        event = self._open_model_event()
        if event is not None:
            event.content += delta
        elif not delta.strip():
            self._pending_whitespace += delta
        else:
            self._start_model_event().content += delta

    def add_thinking(self, delta: Optional[str]) -> None:
        if not delta:
            return
        tail = self._assistant_tail()
        tail.thinking = (tail.thinking or "") + delta

        event = self._open_model_event() or self._start_model_event()
        event.thinking += delta

    # ── Tool exchange ────────────────────────────

    def add_tool_call(self, call: ToolCall) -> TranscriptEvent:
        """Record a tool request: one assistant message, one model event."""
        self._pending_whitespace = ""
        self.messages.append(WireMessage(role=Role.ASSISTANT, tool_calls=[call]))
        self.transcript.mark_last_final()
        request = ToolRequestPart(name=call.name, arguments=dumps_pretty(to_wire(call.arguments)))
        return self.transcript.append(
            TranscriptEvent(role=EventRole.MODEL, model_name=self.model_name, tool_request=request)
        )

    def add_tool_response(self, call: ToolCall, payload) -> TranscriptEvent:
        """Record a successful tool result; ``payload`` is JSON-compatible."""
        self.messages.append(
            WireMessage(role=Role.TOOL, content=dumps_compact(payload), tool_name=call.name)
        )
        return self._append_tool_event(call.name, dumps_pretty(payload))

    def add_tool_failure(self, call: ToolCall, message: str) -> TranscriptEvent:
        self.messages.append(WireMessage(role=Role.TOOL, content=message, tool_name=call.name))
        return self._append_tool_event(call.name, message)

    def _append_tool_event(self, name: str, response: str) -> TranscriptEvent:
        self.transcript.mark_last_final()
        return self.transcript.append(TranscriptEvent(
            role=EventRole.TOOL,
            model_name=self.model_name,
            tool_response=ToolResponsePart(name=name, response=response),
        ))

    # ── Stream completion ────────────────────────

    def finish_stream(self) -> Optional[WireMessage]:
        """Settle the tail after ``done``; returns the pruned message, if any.

        Held-back whitespace is flushed into the transcript so no streamed
        text goes missing, and an assistant message that never received
        anything is removed: it is invalid as history for the next request.
        """
        if self._pending_whitespace:
            event = self._open_model_event() or self._start_model_event()
            event.content += self._pending_whitespace
            self._pending_whitespace = ""

        if self.messages and self.messages[-1].is_empty_assistant():
            _log.debug("Pruning empty assistant message at stream end")
            return self.messages.pop()
        return None
