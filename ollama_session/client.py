"""HTTP transport for the Ollama API, built on requests."""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import requests

from .errors import OllamaConnectionError
from .logger import get_logger

__all__ = ["OllamaClient", "DEFAULT_OLLAMA_HOST", "DEFAULT_TIMEOUT"]

_log = get_logger(__name__)

DEFAULT_OLLAMA_HOST = "localhost:11434"
DEFAULT_TIMEOUT = 20.0

CONNECT_FAILED = "Could not connect to the Ollama instance."
BAD_STATUS = "Ollama didn't send the expected data."


class OllamaClient:
    """Thin wrapper over a ``requests.Session`` bound to one Ollama host.

    ``host`` is read on every call, so reassigning it takes effect on the
    next request.
    """

    def __init__(self, host: str = DEFAULT_OLLAMA_HOST, timeout: float = DEFAULT_TIMEOUT,
                 http: Optional[requests.Session] = None):
        self.host = host
        self.timeout = timeout
        self._http = http or requests.Session()

    def url(self, endpoint: str) -> str:
        return f"http://{self.host}/api/{endpoint}"

    @contextmanager
    def stream_chat(self, payload: Dict[str, Any]) -> Iterator[Iterator[bytes]]:
        """POST to ``/api/chat`` and yield an iterator over raw NDJSON lines.

        The timeout bounds the connect and every wait for the next bytes, not
        the whole stream. Blank keep-alive lines are dropped. Transport
        failures, including a non-200 status or a connection that breaks
        mid-stream, raise ``OllamaConnectionError``. The response is always
        closed on exit.
        """
        url = self.url("chat")
        _log.debug("POST %s (model=%s, %d messages)", url, payload.get("model"),
                   len(payload.get("messages", [])))
        try:
            response = self._http.post(url, json=payload, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise OllamaConnectionError(CONNECT_FAILED) from e

        try:
            if response.status_code != 200:
                raise OllamaConnectionError(
                    f"{BAD_STATUS} (HTTP {response.status_code})",
                    status_code=response.status_code,
                )
            yield self._iter_lines(response)
        finally:
            response.close()

    @staticmethod
    def _iter_lines(response) -> Iterator[bytes]:
        try:
            for line in response.iter_lines():
                if line:
                    yield line
        except requests.RequestException as e:
            raise OllamaConnectionError(f"Stream interrupted: {type(e).__name__}: {e}") from e

    def get_json(self, endpoint: str) -> Any:
        response = self._http.get(self.url(endpoint), timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def post_json(self, endpoint: str, payload: Dict[str, Any]) -> Any:
        response = self._http.post(self.url(endpoint), json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json()
