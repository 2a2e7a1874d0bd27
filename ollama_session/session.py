"""Conversation session with an Ollama model: streaming, tools, cancellation.

``OllamaSession`` keeps two histories side by side: ``messages``, the wire log
resent on every request, and ``transcript``, the events a UI shows. A query
appends the user message, streams the model's answer, runs tool calls inline
as they arrive, and keeps issuing requests until the model finishes a stream
without calling a tool.

Example::

    session = OllamaSession("qwen3:8b", system_prompt="You are helpful.")
    session.tools.append(weather_tool)
    result = session.query("What's the weather in Paris?", update=redraw)
    if result.failed:
        print(result.error.message)
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, List, Optional, Type, TypeVar

from .client import DEFAULT_OLLAMA_HOST, DEFAULT_TIMEOUT, OllamaClient
from .errors import OllamaConnectionError, ProtocolError, QueryCancelled, SessionError
from .logger import get_logger
from .reconciler import MessageReconciler
from .tools import ToolDefinition, ToolDispatcher
from .transcript import Transcript
from .wire import ChatRequest, Chunk, Role, WireMessage

__all__ = [
    "OllamaSession", "SessionStatus", "QueryOutcome", "QueryResult", "QueryHandle",
]

_log = get_logger(__name__)

ArgsT = TypeVar("ArgsT")

STREAM_ENDED_EARLY = "Ollama closed the stream before it was done."


class SessionStatus(Enum):
    """What the model is doing right now; for display only."""
    STARTING = "starting"
    THINKING = "thinking"
    WRITING = "writing"
    CALLING = "calling"


class QueryOutcome(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class QueryResult:
    outcome: QueryOutcome
    error: Optional[SessionError] = None
    requests: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is QueryOutcome.COMPLETED

    @property
    def failed(self) -> bool:
        return self.outcome is QueryOutcome.FAILED

    @property
    def cancelled(self) -> bool:
        return self.outcome is QueryOutcome.CANCELLED


class QueryHandle:
    """The running-query slot: cancellation token plus completion signal."""

    def __init__(self, cancel_event: Optional[threading.Event] = None):
        self.cancel_event = cancel_event or threading.Event()
        self.result: Optional[QueryResult] = None
        self.thread: Optional[threading.Thread] = None
        self.owner: Optional[int] = None
        self._finished = threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[QueryResult]:
        self._finished.wait(timeout)
        return self.result

    def _finish(self, result: Optional[QueryResult]) -> None:
        self.result = result
        self._finished.set()


class OllamaSession(Generic[ArgsT]):
    """Manages one conversation with an Ollama model.

    Args:
        model: Model name, e.g. ``"qwen3:8b"``.
        system_prompt: Content of the initial system message.
        host: ``host:port`` of the Ollama server.
        args_type: Dataclass that tool-call arguments are decoded into.
            ``None`` keeps them as plain dicts.
        timeout: Per-connection connect / read-idle timeout in seconds.
        client: Pre-built transport; mostly for tests.
    """

    def __init__(self, model: str, system_prompt: str = "",
                 host: str = DEFAULT_OLLAMA_HOST, *,
                 args_type: Optional[Type[ArgsT]] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 client: Optional[OllamaClient] = None):
        self.model = model
        self.system_prompt = system_prompt
        self.args_type = args_type
        self.messages: List[WireMessage] = [WireMessage(role=Role.SYSTEM, content=system_prompt)]
        self.transcript = Transcript()
        self.tools: List[ToolDefinition] = []
        self.last_status = SessionStatus.STARTING
        self._client = client or OllamaClient(host, timeout)
        self._reconciler = MessageReconciler(self.messages, self.transcript, model)
        self._dispatcher = ToolDispatcher(self.tools)
        self._running: Optional[QueryHandle] = None
        self._lock = threading.Lock()

    # ── Properties ───────────────────────────────

    @property
    def host(self) -> str:
        return self._client.host

    @host.setter
    def host(self, value: str):
        self._client.host = value

    @property
    def working(self) -> bool:
        """True while a query holds the running slot and was not cancelled."""
        handle = self._running
        return handle is not None and not handle.cancelled

    @property
    def running(self) -> Optional[QueryHandle]:
        return self._running

    def add_tool(self, definition: ToolDefinition) -> ToolDefinition:
        self.tools.append(definition)
        return definition

    def build_request(self) -> ChatRequest:
        return ChatRequest(
            model=self.model,
            messages=self.messages,
            tools=self._dispatcher.schemas(),
        )

    # ── Query lifecycle ──────────────────────────

    def query(self, text: str, update: Optional[Callable[[], None]] = None,
              cancel_event: Optional[threading.Event] = None) -> QueryResult:
        """Run a query on the calling thread and block until it ends.

        Any query still running is cancelled and waited for first. Pass
        ``cancel_event`` to cancel from another thread; :meth:`stop` works
        too. ``update`` is called after every processed chunk.
        """
        handle = QueryHandle(cancel_event)
        self._claim(handle)
        return self._execute(handle, text, update)

    def submit(self, text: str, update: Optional[Callable[[], None]] = None) -> QueryHandle:
        """Run a query on a daemon worker thread, replacing any running one."""
        handle = QueryHandle()
        self._claim(handle)
        handle.thread = threading.Thread(
            target=self._execute, args=(handle, text, update),
            name="ollama-query", daemon=True,
        )
        handle.thread.start()
        return handle

    def stop(self) -> None:
        """Cancel the running query; it returns with outcome ``CANCELLED``."""
        handle = self._running
        if handle is not None:
            handle.cancel()

    def reset(self, system_prompt: Optional[str] = None) -> None:
        """Cancel any running query and start over from the system message."""
        handle = self._running
        if handle is not None:
            handle.cancel()
            if handle.owner != threading.get_ident():
                handle.wait()
        if system_prompt is not None:
            self.system_prompt = system_prompt
        # The reconciler holds references to these lists; clear in place.
        del self.messages[:]
        self.messages.append(WireMessage(role=Role.SYSTEM, content=self.system_prompt))
        self.transcript.clear()
        self.last_status = SessionStatus.STARTING

    def _claim(self, handle: QueryHandle) -> None:
        with self._lock:
            prior, self._running = self._running, handle
        if prior is None or prior.done:
            return
        if prior.owner == threading.get_ident():
            with self._lock:
                self._running = prior
            raise RuntimeError("Cannot start a query from inside a running query")
        _log.debug("Replacing running query")
        prior.cancel()
        prior.wait()

    def _release(self, handle: QueryHandle) -> None:
        with self._lock:
            if self._running is handle:
                self._running = None

    def _execute(self, handle: QueryHandle, text: str,
                 update: Optional[Callable[[], None]]) -> QueryResult:
        handle.owner = threading.get_ident()
        result = None
        try:
            result = self._run(text, update, handle.cancel_event)
            return result
        except Exception as e:
            if handle.thread is None:
                raise
            _log.exception("Query thread crashed")
            result = QueryResult(QueryOutcome.FAILED, error=SessionError(str(e)))
            return result
        finally:
            self._release(handle)
            handle._finish(result)

    def _run(self, text: str, update: Optional[Callable[[], None]],
             cancel: threading.Event) -> QueryResult:
        reconciler = self._reconciler
        reconciler.model_name = self.model
        reconciler.add_user(text)
        self.last_status = SessionStatus.STARTING

        cycles = 0
        try:
            while True:
                self._check_cancelled(cancel)
                request = self.build_request()
                cycles += 1
                _log.debug("Request cycle %d (model=%s)", cycles, self.model)
                if self._stream_turn(request, update, cancel):
                    return QueryResult(QueryOutcome.COMPLETED, requests=cycles)
        except QueryCancelled as e:
            _log.info("Query cancelled after %d request(s)", cycles)
            return QueryResult(QueryOutcome.CANCELLED, error=e, requests=cycles)
        except (OllamaConnectionError, ProtocolError) as e:
            _log.error("Query failed: %s", e)
            return QueryResult(QueryOutcome.FAILED, error=e, requests=cycles)

    def _stream_turn(self, request: ChatRequest, update: Optional[Callable[[], None]],
                     cancel: threading.Event) -> bool:
        """Consume one streamed response.

        Returns ``True`` when the model finished without calling a tool, and
        ``False`` when tool results were added and must be sent back.
        """
        reconciler = self._reconciler
        tools_called = False
        with self._client.stream_chat(request.to_dict()) as lines:
            for line in lines:
                self._check_cancelled(cancel)
                chunk = Chunk.from_line(line, self.args_type)
                message = chunk.message

                # Same-chunk order: content, thinking, tool calls, done.
                if message.content:
                    self.last_status = SessionStatus.WRITING
                    reconciler.add_content(message.content)
                if message.thinking:
                    self.last_status = SessionStatus.THINKING
                    reconciler.add_thinking(message.thinking)
                if message.tool_calls:
                    self.last_status = SessionStatus.CALLING
                    for call in sorted(message.tool_calls, key=lambda c: c.index):
                        reconciler.add_tool_call(call)
                        tools_called = True
                        self._dispatcher.respond(call, reconciler)
                        self._check_cancelled(cancel)

                if chunk.done:
                    reconciler.finish_stream()
                    _notify(update)
                    return not tools_called
                _notify(update)
                self._check_cancelled(cancel)

        raise OllamaConnectionError(STREAM_ENDED_EARLY)

    @staticmethod
    def _check_cancelled(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise QueryCancelled()


def _notify(update: Optional[Callable[[], None]]) -> None:
    if update is not None:
        update()
