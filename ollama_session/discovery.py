"""List the models an Ollama instance offers."""

from typing import List, Optional

import requests

from .client import DEFAULT_OLLAMA_HOST, OllamaClient
from .logger import get_logger
from .wire import ShowModelResponse, TagResponse

__all__ = ["list_models"]

_log = get_logger(__name__)

DISCOVERY_TIMEOUT = 10.0


def list_models(only_tool_calling: bool = False, host: str = DEFAULT_OLLAMA_HOST,
                client: Optional[OllamaClient] = None) -> List[str]:
    """Return model names from ``/api/tags``.

    With ``only_tool_calling`` each model is checked through ``/api/show`` and
    kept only if its capabilities include ``"tools"``. Any failure listing the
    models yields ``[]``; a model whose show request fails is skipped.
    """
    client = client or OllamaClient(host, timeout=DISCOVERY_TIMEOUT)
    try:
        tags = TagResponse.from_dict(client.get_json("tags"))
    except (requests.RequestException, ValueError, KeyError, TypeError) as e:
        _log.warning("Could not list models on %s: %s", client.host, e)
        return []

    if not only_tool_calling:
        return [m.name for m in tags.models]

    eligible = []
    for tag in tags.models:
        try:
            details = ShowModelResponse.from_dict(client.post_json("show", {"model": tag.name}))
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            _log.debug("Skipping %s: %s", tag.name, e)
            continue
        if details.supports_tools():
            eligible.append(tag.name)
    return eligible
