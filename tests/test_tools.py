"""Tests for tool definitions, schema generation and dispatch."""

from dataclasses import dataclass
from typing import Optional

import pytest

from ollama_session.errors import ToolFailure
from ollama_session.reconciler import MessageReconciler
from ollama_session.tools import (
    TOOL_FAILED_MESSAGE,
    ToolDefinition,
    ToolDispatcher,
    object_schema,
    prop,
    tool,
)
from ollama_session.transcript import Transcript
from ollama_session.wire import Role, ToolCall, WireMessage


def _definition(name="get_weather", callback=lambda args: {"temperature": 18}):
    return ToolDefinition(
        name=name,
        description="Get current weather",
        parameters=object_schema({"location": prop("string", "City name")}, ["location"]),
        callback=callback,
    )


def _call(name="get_weather", arguments=None):
    return ToolCall(index=0, name=name, arguments=arguments or {"location": "Paris"})


@dataclass
class Reading:
    temperatureCelsius: int


class TestSchema:
    def test_function_schema(self):
        assert _definition().schema() == {
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Get current weather",
                "parameters": {
                    "type": "object",
                    "properties": {"location": {"type": "string", "description": "City name"}},
                    "required": ["location"],
                },
            },
        }

    def test_decorator_builds_schema_from_signature(self):
        @tool(description="Get current weather")
        def get_weather(location: str, days: int = 1, units: Optional[str] = None) -> dict:
            """
            location: City name
            days: Forecast length
            """
            return {"location": location, "days": days}

        assert isinstance(get_weather, ToolDefinition)
        assert get_weather.name == "get_weather"
        params = get_weather.parameters
        assert params["required"] == ["location"]
        assert params["properties"]["location"] == {"type": "string", "description": "City name"}
        assert params["properties"]["days"] == {
            "type": "integer", "description": "Forecast length", "default": 1,
        }
        assert params["properties"]["units"] == {"type": "string"}
        assert get_weather.callback({"location": "Oslo"}) == {"location": "Oslo", "days": 1}

    def test_decorator_custom_name(self):
        @tool(description="x", name="lookup")
        def _impl(query: str):
            return query

        assert _impl.name == "lookup"


class TestDispatch:
    def test_returns_wire_value(self):
        dispatcher = ToolDispatcher([_definition(callback=lambda args: Reading(18))])
        assert dispatcher.dispatch(_call()) == {"temperature_celsius": 18}

    def test_callback_receives_arguments(self):
        seen = []
        dispatcher = ToolDispatcher([_definition(callback=lambda args: seen.append(args) or "ok")])
        dispatcher.dispatch(_call(arguments={"location": "Rome"}))
        assert seen == [{"location": "Rome"}]

    def test_unknown_tool(self):
        with pytest.raises(ToolFailure, match="missing_tool"):
            ToolDispatcher([_definition()]).dispatch(_call(name="missing_tool"))

    def test_none_result(self):
        with pytest.raises(ToolFailure, match="no result"):
            ToolDispatcher([_definition(callback=lambda args: None)]).dispatch(_call())

    def test_callback_raises(self):
        def boom(args):
            raise ValueError("bad city")

        with pytest.raises(ToolFailure, match="bad city"):
            ToolDispatcher([_definition(callback=boom)]).dispatch(_call())

    def test_unserializable_result(self):
        with pytest.raises(ToolFailure):
            ToolDispatcher([_definition(callback=lambda args: {"at": object()})]).dispatch(_call())

    def test_first_registration_wins(self):
        dispatcher = ToolDispatcher([
            _definition(callback=lambda args: "first"),
            _definition(callback=lambda args: "second"),
        ])
        assert dispatcher.dispatch(_call()) == "first"

    def test_sees_tools_added_later(self):
        tools = []
        dispatcher = ToolDispatcher(tools)
        tools.append(_definition())
        assert dispatcher.find("get_weather") is tools[0]
        assert len(dispatcher.schemas()) == 1


class TestRespond:
    @pytest.fixture
    def reconciler(self):
        return MessageReconciler([WireMessage(role=Role.SYSTEM, content="")], Transcript(), "m")

    def test_success_adds_one_tool_message(self, reconciler):
        ok = ToolDispatcher([_definition()]).respond(_call(), reconciler)
        assert ok is True
        assert reconciler.messages[-1].role is Role.TOOL
        assert reconciler.messages[-1].content == '{"temperature":18}'

    @pytest.mark.parametrize("callback", [
        lambda args: None,
        lambda args: 1 / 0,
        lambda args: {"at": object()},
    ])
    def test_failure_adds_failure_message(self, reconciler, callback):
        ok = ToolDispatcher([_definition(callback=callback)]).respond(_call(), reconciler)
        assert ok is False
        tool_messages = [m for m in reconciler.messages if m.role is Role.TOOL]
        assert len(tool_messages) == 1
        assert tool_messages[0].content == TOOL_FAILED_MESSAGE
        assert tool_messages[0].tool_name == "get_weather"

    def test_unknown_tool_adds_failure_message(self, reconciler):
        ok = ToolDispatcher([]).respond(_call(name="nope"), reconciler)
        assert ok is False
        assert reconciler.messages[-1].content == TOOL_FAILED_MESSAGE
        assert reconciler.transcript.last.tool_response.name == "nope"
