"""
Local registry probe - list models served by a local Ollama instance.

Best effort: every failure mode (bad URL, connection refused, non-2xx,
unexpected JSON) yields an empty list.
"""

import logging
import time
from typing import Any
from urllib.parse import urlparse

import httpx

from taskdeck.config import HTTP_TIMEOUT, LOCAL_REGISTRY_DEFAULT_URL, LOCAL_REGISTRY_TAGS_PATH
from taskdeck.logging import CatalogLogEntry, catalog_logger, get_session_id, now_iso

logger = logging.getLogger(__name__)


def _is_valid_base_url(base_url: str) -> bool:
    parsed = urlparse(base_url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _model_names(payload: Any) -> list[str]:
    """Distinct ``models[].name`` values in first-seen order."""
    if not isinstance(payload, dict) or not isinstance(payload.get("models"), list):
        return []
    names: list[str] = []
    for model in payload["models"]:
        name = model.get("name") if isinstance(model, dict) else None
        if isinstance(name, str) and name and name not in names:
            names.append(name)
    return names


async def get_local_models(
    base_url: str | None = None,
    timeout: float = HTTP_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[str]:
    """
    List model names from a local registry.

    Args:
        base_url: Registry root (defaults to http://localhost:11434)
        timeout: Transport timeout in seconds
        transport: Optional httpx transport for tests

    Returns:
        Model names, or [] if the registry cannot be reached or parsed
    """
    base_url = base_url or LOCAL_REGISTRY_DEFAULT_URL
    if not _is_valid_base_url(base_url):
        logger.debug("Not probing local registry, invalid base url: %r", base_url)
        return []

    url = base_url.rstrip("/") + LOCAL_REGISTRY_TAGS_PATH
    start_time = time.time()
    log_entry = CatalogLogEntry(
        timestamp=now_iso(),
        session_id=get_session_id(),
        source="local",
        url=url,
    )

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
        log_entry.status_code = response.status_code
        response.raise_for_status()
        names = _model_names(response.json())
    except (httpx.HTTPError, ValueError) as e:
        log_entry.latency_ms = int((time.time() - start_time) * 1000)
        log_entry.error = str(e)
        log_entry.error_type = type(e).__name__
        catalog_logger.warning(log_entry.to_json())
        logger.debug("Local registry probe failed for %s: %s", url, e)
        return []

    log_entry.latency_ms = int((time.time() - start_time) * 1000)
    log_entry.model_count = len(names)
    catalog_logger.info(log_entry.to_json())
    return names
