"""Shared fixtures for ollama-session tests."""

import json
import os
from unittest.mock import MagicMock

import pytest
import requests
import yaml

import ollama_session.config as config_module


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory and cd into it."""
    orig = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(orig)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep the real ~/.ollama-session and OLLAMA_HOST out of every test."""
    home = tmp_path / "home"
    monkeypatch.setattr(config_module, "CONFIG_DIR", home)
    monkeypatch.setattr(config_module, "CONFIG_FILE", home / "config.yml")
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    return home


@pytest.fixture
def sample_config_data():
    """Minimal .ollama-session.yml data dict."""
    return {
        "host": "gpu-box:11434",
        "model": "qwen3:8b",
        "system-prompt": "You are terse.",
        "request-timeout": 30,
        "show-thinking": True,
        "tool-request-display": "details",
        "tool-response-display": "name",
        "model-picker": "all",
        "verbose": False,
        "log-file": "off",
    }


@pytest.fixture
def config_yaml_file(tmp_dir, sample_config_data):
    """Write a config YAML to tmp_dir and return its Path."""
    path = tmp_dir / ".ollama-session.yml"
    with open(path, "w") as f:
        yaml.dump(sample_config_data, f, default_flow_style=False)
    return path


@pytest.fixture
def mock_console():
    """A mock Rich Console that silently accepts all print calls."""
    c = MagicMock()
    c.print = MagicMock()
    return c


# ── Fake HTTP layer ──────────────────────────────


def chunk(content=None, thinking=None, tool_calls=None, done=False) -> bytes:
    """One NDJSON line of a streaming /api/chat response."""
    message = {"role": "assistant"}
    if content is not None:
        message["content"] = content
    if thinking is not None:
        message["thinking"] = thinking
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return json.dumps({"model": "test-model", "message": message, "done": done}).encode()


def call(name, arguments=None, index=0) -> dict:
    return {"function": {"index": index, "name": name, "arguments": arguments or {}}}


class FakeResponse:
    """Stand-in for a streamed ``requests.Response``."""

    def __init__(self, lines=(), status_code=200, payload=None, fail_after=None,
                 on_line=None):
        self.lines = list(lines)
        self.status_code = status_code
        self.payload = payload
        self.fail_after = fail_after
        self.on_line = on_line
        self.closed = False

    def iter_lines(self):
        for i, line in enumerate(self.lines):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.ConnectionError("connection reset")
            if self.on_line is not None:
                self.on_line(i)
            yield line

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def close(self):
        self.closed = True


class FakeHTTP:
    """Stand-in for ``requests.Session``: replays one response per POST."""

    def __init__(self, responses=(), get_responses=None, post_responses=None):
        self.responses = list(responses)
        self.get_responses = dict(get_responses or {})
        self.post_responses = dict(post_responses or {})
        self.posts = []
        self.gets = []

    def post(self, url, json=None, stream=False, timeout=None):
        self.posts.append({"url": url, "json": json, "stream": stream, "timeout": timeout})
        if stream:
            if not self.responses:
                raise requests.ConnectionError("no more scripted responses")
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        key = (url.rsplit("/", 1)[-1], (json or {}).get("model"))
        response = self.post_responses[key]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, timeout=None):
        self.gets.append(url)
        response = self.get_responses[url.rsplit("/", 1)[-1]]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def chat_payloads(self):
        return [p["json"] for p in self.posts if p["url"].endswith("/api/chat")]


@pytest.fixture
def fake_http():
    return FakeHTTP()

