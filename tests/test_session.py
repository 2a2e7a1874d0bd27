"""End-to-end session tests against a scripted HTTP layer."""

import json
import threading
import time
from dataclasses import dataclass

import pytest
import requests

from conftest import FakeResponse, call, chunk
from ollama_session.client import BAD_STATUS, CONNECT_FAILED, OllamaClient
from ollama_session.errors import OllamaConnectionError, ProtocolError
from ollama_session.session import (
    STREAM_ENDED_EARLY,
    OllamaSession,
    QueryOutcome,
    SessionStatus,
)
from ollama_session.tools import TOOL_FAILED_MESSAGE, ToolDefinition, object_schema, prop
from ollama_session.transcript import EventRole
from ollama_session.wire import Role

WEATHER = {"temperature": 18, "conditions": "Cloudy"}


@dataclass
class WeatherArgs:
    location: str


def weather_tool(callback=lambda args: dict(WEATHER)):
    return ToolDefinition(
        name="get_weather",
        description="Get current weather for a location",
        parameters=object_schema({"location": prop("string", "City name")}, ["location"]),
        callback=callback,
    )


def make_session(fake_http, *responses, **kwargs):
    fake_http.responses.extend(responses)
    client = OllamaClient("ollama.test:11434", timeout=5.0, http=fake_http)
    return OllamaSession("test-model", system_prompt="sys", client=client, **kwargs)


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


class TestStreaming:
    def test_content_only_reply(self, fake_http):
        response = FakeResponse([chunk(content="He"), chunk(content="llo"), chunk(content="", done=True)])
        session = make_session(fake_http, response)
        updates = []

        result = session.query("hi", update=lambda: updates.append(1))

        assert result.outcome is QueryOutcome.COMPLETED
        assert result.requests == 1
        assert len(fake_http.posts) == 1
        assert len(updates) == 3
        assert response.closed
        events = session.transcript.snapshot()
        assert [e.role for e in events] == [EventRole.USER, EventRole.MODEL]
        assert events[1].content == "Hello"
        assert [m.role for m in session.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert session.messages[-1].content == "Hello"

    def test_request_payload(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(done=True)]))
        session.add_tool(weather_tool())
        session.query("hi")

        post = fake_http.posts[0]
        assert post["url"] == "http://ollama.test:11434/api/chat"
        assert post["stream"] is True
        assert post["timeout"] == 5.0
        payload = post["json"]
        assert payload["model"] == "test-model"
        assert payload["stream"] is True
        assert payload["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]
        assert payload["tools"][0]["function"]["name"] == "get_weather"

    def test_thinking_and_content_in_one_event(self, fake_http):
        session = make_session(fake_http, FakeResponse([
            chunk(thinking="Let me "),
            chunk(thinking="think."),
            chunk(content="Done."),
            chunk(done=True),
        ]))
        session.query("hi")
        event = session.transcript.last
        assert event.thinking == "Let me think."
        assert event.content == "Done."
        assert session.messages[-1].thinking == "Let me think."

    def test_done_only_stream_leaves_no_assistant(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(content="", done=True)]))
        result = session.query("hi")
        assert result.ok
        assert session.messages[-1].role is Role.USER
        assert session.transcript.last.role is EventRole.USER

    def test_second_query_resends_history(self, fake_http):
        session = make_session(
            fake_http,
            FakeResponse([chunk(content="One"), chunk(done=True)]),
            FakeResponse([chunk(content="Two"), chunk(done=True)]),
        )
        session.query("first")
        session.query("second")
        roles = [m["role"] for m in fake_http.chat_payloads[1]["messages"]]
        assert roles == ["system", "user", "assistant", "user"]


class TestToolCycle:
    def test_weather_round_trip(self, fake_http):
        session = make_session(
            fake_http,
            FakeResponse([
                chunk(content="Checking."),
                chunk(tool_calls=[call("get_weather", {"location": "Paris"})]),
                chunk(done=True),
            ]),
            FakeResponse([chunk(content="Cloudy, 18 degrees."), chunk(done=True)]),
        )
        seen = []
        session.add_tool(weather_tool(lambda args: seen.append(args) or dict(WEATHER)))

        result = session.query("Weather in Paris?")

        assert result.ok
        assert result.requests == 2
        assert seen == [{"location": "Paris"}]
        assert len(fake_http.chat_payloads) == 2

        follow_up = fake_http.chat_payloads[1]["messages"]
        assert follow_up[-1] == {
            "role": "tool",
            "content": '{"temperature":18,"conditions":"Cloudy"}',
            "tool_name": "get_weather",
        }
        assert follow_up[-2]["tool_calls"] == [
            {"function": {"index": 0, "name": "get_weather", "arguments": {"location": "Paris"}}}
        ]

        events = session.transcript.snapshot()[1:]
        assert [e.role for e in events] == [EventRole.MODEL, EventRole.MODEL, EventRole.TOOL, EventRole.MODEL]
        assert events[0].content == "Checking."
        assert events[1].tool_request.name == "get_weather"
        assert json.loads(events[2].tool_response.response) == WEATHER
        assert events[3].content == "Cloudy, 18 degrees."

    def test_typed_arguments(self, fake_http):
        session = make_session(
            fake_http,
            FakeResponse([chunk(tool_calls=[call("get_weather", {"location": "Oslo"})]), chunk(done=True)]),
            FakeResponse([chunk(done=True)]),
            args_type=WeatherArgs,
        )
        seen = []
        session.add_tool(weather_tool(lambda args: seen.append(args) or dict(WEATHER)))
        assert session.query("hi").ok
        assert seen == [WeatherArgs(location="Oslo")]

    def test_unknown_tool_does_not_fail_query(self, fake_http):
        session = make_session(
            fake_http,
            FakeResponse([chunk(tool_calls=[call("missing_tool")]), chunk(done=True)]),
            FakeResponse([chunk(content="Sorry."), chunk(done=True)]),
        )
        result = session.query("hi")
        assert result.ok
        tool_messages = [m for m in session.messages if m.role is Role.TOOL]
        assert len(tool_messages) == 1
        assert tool_messages[0].content == TOOL_FAILED_MESSAGE
        assert fake_http.chat_payloads[1]["messages"][-1]["content"] == TOOL_FAILED_MESSAGE

    def test_every_call_gets_exactly_one_response(self, fake_http):
        session = make_session(
            fake_http,
            FakeResponse([
                chunk(tool_calls=[call("get_weather", {"location": "A"}, 0),
                                  call("get_weather", {"location": "B"}, 1)]),
                chunk(done=True),
            ]),
            FakeResponse([chunk(done=True)]),
        )
        session.add_tool(weather_tool())
        session.query("hi")
        roles = [m.role for m in session.messages[2:]]
        assert roles == [Role.ASSISTANT, Role.TOOL, Role.ASSISTANT, Role.TOOL]

    def test_calls_dispatched_in_index_order(self, fake_http):
        session = make_session(
            fake_http,
            FakeResponse([
                chunk(tool_calls=[call("get_weather", {"location": "second"}, 1),
                                  call("get_weather", {"location": "first"}, 0)]),
                chunk(done=True),
            ]),
            FakeResponse([chunk(done=True)]),
        )
        seen = []
        session.add_tool(weather_tool(lambda args: seen.append(args["location"]) or dict(WEATHER)))
        session.query("hi")
        assert seen == ["first", "second"]

    def test_status_reports_tool_use(self, fake_http):
        statuses = []
        session = make_session(
            fake_http,
            FakeResponse([chunk(tool_calls=[call("get_weather", {"location": "A"})]), chunk(done=True)]),
            FakeResponse([chunk(content="ok"), chunk(done=True)]),
        )
        session.add_tool(weather_tool())
        session.query("hi", update=lambda: statuses.append(session.last_status))
        assert SessionStatus.CALLING in statuses
        assert statuses[-1] is SessionStatus.WRITING


class TestFailures:
    def test_connection_refused(self, fake_http):
        session = make_session(fake_http, requests.ConnectionError("refused"))
        result = session.query("hi")
        assert result.failed
        assert isinstance(result.error, OllamaConnectionError)
        assert result.error.message == CONNECT_FAILED
        assert not result.error.user_cancelled

    def test_bad_status(self, fake_http):
        response = FakeResponse(status_code=500)
        session = make_session(fake_http, response)
        result = session.query("hi")
        assert result.failed
        assert result.error.status_code == 500
        assert result.error.message.startswith(BAD_STATUS)
        assert response.closed

    def test_garbage_line(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(content="Hi"), b"<html>"]))
        result = session.query("hi")
        assert result.failed
        assert isinstance(result.error, ProtocolError)
        assert session.transcript.last.content == "Hi"

    def test_stream_without_done(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(content="Hi")]))
        result = session.query("hi")
        assert result.failed
        assert result.error.message == STREAM_ENDED_EARLY

    def test_interrupted_stream(self, fake_http):
        response = FakeResponse([chunk(content="Hi"), chunk(content="!")], fail_after=1)
        session = make_session(fake_http, response)
        result = session.query("hi")
        assert result.failed
        assert isinstance(result.error, OllamaConnectionError)
        assert response.closed

    def test_failure_keeps_session_usable(self, fake_http):
        session = make_session(
            fake_http,
            requests.ConnectionError("refused"),
            FakeResponse([chunk(content="back"), chunk(done=True)]),
        )
        assert session.query("hi").failed
        assert session.query("again").ok
        assert session.transcript.last.content == "back"


class TestCancellation:
    def test_cancel_before_network(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(done=True)]))
        cancel = threading.Event()
        cancel.set()
        result = session.query("hi", cancel_event=cancel)
        assert result.cancelled
        assert result.error.user_cancelled
        assert result.error.message == "User cancelled"
        assert fake_http.posts == []

    def test_cancel_mid_stream_keeps_partial_text(self, fake_http):
        cancel = threading.Event()

        def on_line(i):
            if i == 1:
                cancel.set()

        response = FakeResponse(
            [chunk(content="He"), chunk(content="llo"), chunk(done=True)], on_line=on_line,
        )
        session = make_session(fake_http, response)
        result = session.query("hi", cancel_event=cancel)
        assert result.cancelled
        assert session.transcript.last.content == "He"
        assert response.closed

    def test_cancel_from_tool_skips_remaining_calls(self, fake_http):
        cancel = threading.Event()
        seen = []

        def callback(args):
            seen.append(args["location"])
            cancel.set()
            return dict(WEATHER)

        session = make_session(
            fake_http,
            FakeResponse([
                chunk(tool_calls=[call("get_weather", {"location": "A"}, 0),
                                  call("get_weather", {"location": "B"}, 1)]),
                chunk(done=True),
            ]),
            FakeResponse([chunk(content="never sent"), chunk(done=True)]),
        )
        session.add_tool(weather_tool(callback))

        result = session.query("hi", cancel_event=cancel)

        assert result.outcome is QueryOutcome.CANCELLED
        assert result.error.user_cancelled
        assert seen == ["A"]
        assert len(fake_http.posts) == 1
        tool_messages = [m for m in session.messages if m.role is Role.TOOL]
        assert len(tool_messages) == 1
        requested = [tc.arguments["location"] for m in session.messages for tc in (m.tool_calls or [])]
        assert requested == ["A"]

    def test_stop_running_submit(self, fake_http):
        started, gate = threading.Event(), threading.Event()

        def on_line(i):
            if i == 1:
                started.set()
                gate.wait(5)

        session = make_session(fake_http, FakeResponse(
            [chunk(content="a"), chunk(content="b"), chunk(done=True)], on_line=on_line,
        ))
        handle = session.submit("hi")
        assert started.wait(5)
        assert session.working
        session.stop()
        assert not session.working
        gate.set()

        result = handle.wait(5)
        assert result.cancelled
        assert handle.done
        assert session.running is None

    def test_submit_completes(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(content="ok"), chunk(done=True)]))
        handle = session.submit("hi")
        result = handle.wait(5)
        assert result.ok
        assert session.running is None
        assert session.transcript.last.content == "ok"

    def test_new_query_replaces_running_one(self, fake_http):
        holder = {}

        def on_line(i):
            if i == 1:
                _wait_until(lambda: holder.get("first") is not None and holder["first"].cancelled)

        session = make_session(
            fake_http,
            FakeResponse([chunk(content="a"), chunk(content="b"), chunk(done=True)], on_line=on_line),
            FakeResponse([chunk(content="second"), chunk(done=True)]),
        )
        holder["first"] = session.submit("first")
        _wait_until(lambda: len(fake_http.posts) == 1)
        result = session.query("second")

        assert holder["first"].result.cancelled
        assert result.ok
        assert session.transcript.last.content == "second"

    def test_query_from_inside_query_is_rejected(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(content="a"), chunk(done=True)]))
        with pytest.raises(RuntimeError):
            session.query("outer", update=lambda: session.query("inner"))
        assert session.running is None


class TestSessionState:
    def test_host_change_applies_to_next_request(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(done=True)]))
        session.host = "gpu-box:11434"
        session.query("hi")
        assert fake_http.posts[0]["url"] == "http://gpu-box:11434/api/chat"

    def test_model_change_applies_to_next_request(self, fake_http):
        session = make_session(
            fake_http,
            FakeResponse([chunk(content="x"), chunk(done=True)]),
            FakeResponse([chunk(content="y"), chunk(done=True)]),
        )
        session.query("one")
        session.model = "llama3.2"
        session.query("two")
        assert fake_http.chat_payloads[1]["model"] == "llama3.2"
        assert session.transcript.last.model_name == "llama3.2"

    def test_reset(self, fake_http):
        session = make_session(fake_http, FakeResponse([chunk(content="x"), chunk(done=True)]))
        session.query("hi")
        session.reset(system_prompt="new")
        assert len(session.transcript) == 0
        assert [m.to_dict() for m in session.messages] == [{"role": "system", "content": "new"}]
