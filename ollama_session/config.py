"""
Configuration: host, model and display preferences.

Loading priority (first file found wins):
  1. Project dir .ollama-session.yml
  2. Global ~/.ollama-session/config.yml

``.env`` files next to either location are loaded first (without overriding
the real environment); ``OLLAMA_HOST`` then overrides the configured host.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml
from dotenv import load_dotenv

from .client import DEFAULT_OLLAMA_HOST, DEFAULT_TIMEOUT
from .logger import get_logger

_log = get_logger(__name__)

CONFIG_DIR = Path.home() / ".ollama-session"
CONFIG_FILE = CONFIG_DIR / "config.yml"
PROJECT_CONFIG_NAME = ".ollama-session.yml"
HISTORY_FILE = CONFIG_DIR / "history.txt"

TOOL_DISPLAY_MODES = {"none", "exists", "name", "details"}
MODEL_PICKER_MODES = {"none", "all", "tools"}


# ── Configuration metadata and validation ──


@dataclass
class ConfigFieldSpec:
    """Configuration field specification with validation rules."""
    key: str
    field_name: str
    description: str
    value_type: str  # "str", "int", "bool"
    default: Any
    validator: Optional[Callable[[Any], tuple[bool, Any, str]]] = None  # (valid, coerced_value, error_msg)


def _validate_int_range(value: Any, min_val: int, max_val: int) -> tuple[bool, int, str]:
    """Validate integer within range."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return False, 0, "Must be an integer"
    if parsed < min_val or parsed > max_val:
        return False, max(min_val, min(max_val, parsed)), f"Must be between {min_val} and {max_val}"
    return True, parsed, ""


def _validate_enum(value: Any, valid_values: set) -> tuple[bool, str, str]:
    """Validate value is in allowed set."""
    val_str = str(value).strip().lower()
    if val_str not in valid_values:
        return False, "", f"Must be one of: {', '.join(sorted(valid_values))}"
    return True, val_str, ""


def _validate_bool(value: Any) -> tuple[bool, bool, str]:
    """Validate boolean value."""
    if isinstance(value, bool):
        return True, value, ""
    if isinstance(value, str):
        val_lower = value.strip().lower()
        if val_lower in ("1", "true", "yes", "on"):
            return True, True, ""
        if val_lower in ("0", "false", "no", "off"):
            return True, False, ""
    return False, False, "Must be true/false, yes/no, on/off, or 1/0"


def _validate_host(value: Any) -> tuple[bool, str, str]:
    """Accept ``host:port`` with or without an http(s) scheme."""
    host = normalize_host(value)
    if not host or " " in host:
        return False, "", "Must look like host:port, e.g. localhost:11434"
    return True, host, ""


def normalize_host(value: Any) -> str:
    host = str(value or "").strip()
    host = host.removeprefix("http://").removeprefix("https://")
    return host.rstrip("/")


CONFIG_FIELDS: Dict[str, ConfigFieldSpec] = {
    "host": ConfigFieldSpec(
        key="host",
        field_name="host",
        description="Ollama server address (host:port)",
        value_type="str",
        default=DEFAULT_OLLAMA_HOST,
        validator=_validate_host,
    ),
    "model": ConfigFieldSpec(
        key="model",
        field_name="model",
        description="Model used for new sessions",
        value_type="str",
        default="",
    ),
    "system-prompt": ConfigFieldSpec(
        key="system-prompt",
        field_name="system_prompt",
        description="System message every conversation starts with",
        value_type="str",
        default="",
    ),
    "request-timeout": ConfigFieldSpec(
        key="request-timeout",
        field_name="request_timeout",
        description="Connect / read-idle timeout per request in seconds",
        value_type="int",
        default=int(DEFAULT_TIMEOUT),
        validator=lambda v: _validate_int_range(v, 1, 600),
    ),
    "show-thinking": ConfigFieldSpec(
        key="show-thinking",
        field_name="show_thinking",
        description="Show the model's thinking in the transcript",
        value_type="bool",
        default=False,
        validator=_validate_bool,
    ),
    "tool-request-display": ConfigFieldSpec(
        key="tool-request-display",
        field_name="tool_request_display",
        description="Tool request display: none, exists, name, or details",
        value_type="str",
        default="none",
        validator=lambda v: _validate_enum(v, TOOL_DISPLAY_MODES),
    ),
    "tool-response-display": ConfigFieldSpec(
        key="tool-response-display",
        field_name="tool_response_display",
        description="Tool response display: none, exists, name, or details",
        value_type="str",
        default="none",
        validator=lambda v: _validate_enum(v, TOOL_DISPLAY_MODES),
    ),
    "model-picker": ConfigFieldSpec(
        key="model-picker",
        field_name="model_picker",
        description="Models offered by /model: none, all, or tools",
        value_type="str",
        default="tools",
        validator=lambda v: _validate_enum(v, MODEL_PICKER_MODES),
    ),
    "verbose": ConfigFieldSpec(
        key="verbose",
        field_name="verbose",
        description="Enable debug logging",
        value_type="bool",
        default=False,
        validator=_validate_bool,
    ),
    "log-file": ConfigFieldSpec(
        key="log-file",
        field_name="log_file",
        description="Log file path (empty: default location, 'off': disabled)",
        value_type="str",
        default="",
    ),
}


def validate_config_value(key: str, value: Any) -> tuple[bool, Any, str]:
    """
    Validate a configuration value.

    Returns:
        (is_valid, coerced_value, error_message)
    """
    if key not in CONFIG_FIELDS:
        return False, value, f"Unknown configuration key: {key}"

    spec = CONFIG_FIELDS[key]
    if spec.validator:
        return spec.validator(value)

    if spec.value_type == "int":
        try:
            return True, int(value), ""
        except (TypeError, ValueError):
            return False, spec.default, "Must be an integer"
    elif spec.value_type == "bool":
        return _validate_bool(value)
    return True, "" if value is None else str(value), ""


@dataclass
class Config:
    host: str = DEFAULT_OLLAMA_HOST
    model: str = ""
    system_prompt: str = ""
    request_timeout: int = int(DEFAULT_TIMEOUT)
    show_thinking: bool = False
    tool_request_display: str = "none"
    tool_response_display: str = "none"
    model_picker: str = "tools"
    verbose: bool = False
    log_file: str = ""
    _config_source: str = field(default="", repr=False)

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        config = cls()
        project_path = Path(project_dir).resolve()

        for env_path in [CONFIG_DIR / ".env", project_path / ".env"]:
            if env_path.exists():
                load_dotenv(env_path, override=False)

        for candidate in [project_path / PROJECT_CONFIG_NAME, CONFIG_FILE]:
            if candidate.exists():
                config._load_yaml(candidate)
                config._config_source = str(candidate)
                break

        config._apply_env()
        return config

    def _load_yaml(self, filepath: Path):
        try:
            with open(filepath, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            _log.warning("Ignoring unreadable config %s: %s", filepath, e)
            return
        if not isinstance(data, dict):
            _log.warning("Ignoring config %s: top level must be a mapping", filepath)
            return

        for key, spec in CONFIG_FIELDS.items():
            if key not in data:
                continue
            valid, value, error = validate_config_value(key, data[key])
            if not valid:
                _log.warning("Config %s: %s (using %r)", key, error, spec.default)
                value = spec.default
            setattr(self, spec.field_name, value)

    def _apply_env(self):
        env_host = os.environ.get("OLLAMA_HOST")
        if env_host:
            valid, host, _ = _validate_host(env_host)
            if valid:
                self.host = host

    def set(self, key: str, value: Any) -> tuple[bool, str]:
        """Validate and assign one kebab-case key; returns (ok, error)."""
        valid, coerced, error = validate_config_value(key, value)
        if not valid:
            return False, error
        setattr(self, CONFIG_FIELDS[key].field_name, coerced)
        return True, ""

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, spec.field_name) for key, spec in CONFIG_FIELDS.items()}

    def save(self, path: Optional[Path] = None) -> Path:
        target = Path(path or self._config_source or CONFIG_FILE)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)
        self._config_source = str(target)
        return target

    @property
    def config_source(self) -> str:
        return self._config_source

    def resolve_log_file(self):
        """Map ``log_file`` onto :func:`~ollama_session.logger.setup_logger`'s argument."""
        value = (self.log_file or "").strip()
        if not value:
            return None
        if value.lower() in ("off", "false", "no", "0"):
            return False
        return value
