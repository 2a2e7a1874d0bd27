"""Tool definitions and dispatch.

A :class:`ToolDefinition` pairs the function schema shown to the model with
the callback that runs when the model calls it. Definitions can be written by
hand or generated from a plain function with :func:`tool`::

    @tool(description="Get current weather for a location")
    def get_weather(location: str, units: str = "celsius") -> dict:
        \"\"\"
        location: City name
        units: celsius or fahrenheit
        \"\"\"
        ...

The dispatcher never lets a tool problem escape as a query failure: unknown
names, callbacks that return ``None`` or raise, and results that cannot be
serialized all become the same ``"Tool call failed."`` tool response.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, get_type_hints

from .errors import ToolFailure
from .logger import get_logger
from .wire import ToolCall, to_wire

__all__ = [
    "ToolDefinition", "ToolDispatcher", "TOOL_FAILED_MESSAGE",
    "object_schema", "prop", "tool",
]

_log = get_logger(__name__)

TOOL_FAILED_MESSAGE = "Tool call failed."

# Python type -> JSON Schema type
_TYPE_MAP = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def prop(type_: str, description: str, **extra) -> dict:
    """A single JSON Schema property."""
    return {"type": type_, "description": description, **extra}


def object_schema(properties: Dict[str, dict], required: Sequence[str] = ()) -> dict:
    """JSON Schema object for a tool's parameters."""
    return {
        "type": "object",
        "properties": properties,
        "required": list(required),
    }


@dataclass
class ToolDefinition:
    """A tool the model may call: schema plus callback.

    ``callback`` receives the decoded arguments (a ``dict`` unless the session
    was created with an ``args_type``) and returns any JSON-serializable
    value, or ``None`` to signal that it could not produce a result.
    """
    name: str
    description: str
    parameters: dict
    callback: Callable[[Any], Optional[Any]]

    def schema(self) -> dict:
        """OpenAI-style function schema, as accepted by Ollama."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def tool(description: str, name: Optional[str] = None):
    """Decorator turning a function into a :class:`ToolDefinition`.

    The schema is generated from the signature; parameter descriptions are
    read from ``param: text`` lines in the docstring. The generated callback
    expands a ``dict`` of arguments into keyword arguments.
    """
    def decorator(func: Callable) -> ToolDefinition:
        tool_name = name or func.__name__

        def callback(arguments):
            if isinstance(arguments, dict):
                return func(**arguments)
            return func(arguments)

        return ToolDefinition(
            name=tool_name,
            description=description,
            parameters=_build_parameters(func),
            callback=callback,
        )

    return decorator


def _build_parameters(func: Callable) -> dict:
    """Auto-generate a JSON Schema object from a function signature."""
    sig = inspect.signature(func)
    try:
        hints = get_type_hints(func)
    except Exception:
        hints = {}

    properties = {}
    required = []
    for param_name, param in sig.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        hint = hints.get(param_name)
        # Optional[X] -> X
        args = getattr(hint, "__args__", None)
        if args and type(None) in args:
            hint = next((a for a in args if a is not type(None)), None)
        hint = getattr(hint, "__origin__", hint)

        entry: Dict[str, Any] = {"type": _TYPE_MAP.get(hint, "string")}
        doc_desc = _extract_param_doc(func, param_name)
        if doc_desc:
            entry["description"] = doc_desc

        if param.default is not inspect.Parameter.empty:
            if param.default is not None:
                entry["default"] = param.default
        else:
            required.append(param_name)
        properties[param_name] = entry

    return object_schema(properties, required)


def _extract_param_doc(func: Callable, param_name: str) -> str:
    doc = func.__doc__
    if not doc:
        return ""
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped.startswith(f"{param_name}:") or stripped.startswith(f"{param_name} :"):
            _, _, desc = stripped.partition(":")
            return desc.strip()
    return ""


class ToolDispatcher:
    """Looks up tools by name and turns their outcome into history entries.

    Holds a reference to the session's tool list, so tools registered after
    the dispatcher was created are visible at the next lookup.
    """

    def __init__(self, tools: List[ToolDefinition]):
        self.tools = tools

    def find(self, name: str) -> Optional[ToolDefinition]:
        # First match wins when a name is registered twice.
        return next((t for t in self.tools if t.name == name), None)

    def schemas(self) -> List[dict]:
        return [t.schema() for t in self.tools]

    def dispatch(self, call: ToolCall) -> Any:
        """Run the callback for ``call`` and return its JSON-compatible result.

        Raises ``ToolFailure`` when the tool is unknown, the callback raises,
        returns ``None``, or returns something JSON cannot represent.
        """
        definition = self.find(call.name)
        if definition is None:
            raise ToolFailure(call.name, "no tool registered with this name")

        try:
            result = definition.callback(call.arguments)
        except Exception as e:
            _log.exception("Tool %s raised", call.name)
            raise ToolFailure(call.name, f"{type(e).__name__}: {e}") from e

        if result is None:
            raise ToolFailure(call.name, "callback returned no result")
        try:
            return to_wire(result)
        except TypeError as e:
            raise ToolFailure(call.name, str(e)) from e

    def respond(self, call: ToolCall, reconciler) -> bool:
        """Dispatch ``call`` and fold exactly one tool response into history.

        Returns ``True`` when the tool produced a result.
        """
        try:
            payload = self.dispatch(call)
        except ToolFailure as e:
            _log.warning("%s", e)
            reconciler.add_tool_failure(call, TOOL_FAILED_MESSAGE)
            return False
        _log.debug("Tool %s returned a result", call.name)
        reconciler.add_tool_response(call, payload)
        return True
