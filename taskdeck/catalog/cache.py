"""
Model Catalog Cache

Keeps a local copy of the remote model registry in
``<data_dir>/cache/openrouter_models.json``.

Reads are stale-tolerant: whatever is on disk is returned immediately.
``refresh()`` fetches the registry, replaces the cache file wholesale and
hands the new catalog to a notify callback. A failed refresh leaves the file
untouched and still notifies (with an empty mapping), so listeners never wait
on a refresh that will not come.
"""

import json
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from taskdeck.catalog.models import (
    ModelInfo,
    catalog_from_dict,
    catalog_to_dict,
    parse_registry_models,
)
from taskdeck.config import HTTP_TIMEOUT, REGISTRY_MODELS_URL, GlobalFileNames
from taskdeck.exceptions import CatalogError, CatalogFetchError
from taskdeck.logging import CatalogLogEntry, catalog_logger, get_session_id, now_iso

logger = logging.getLogger(__name__)

CatalogListener = Callable[[dict[str, ModelInfo]], Any]


class ModelCatalogCache:
    """Read/refresh access to the cached model catalog."""

    def __init__(
        self,
        cache_dir: Path,
        url: str = REGISTRY_MODELS_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the cache.

        Args:
            cache_dir: Directory holding the cache file
            url: Registry models endpoint
            timeout: Transport timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.cache_dir = Path(cache_dir)
        self.url = url
        self.timeout = timeout
        self._transport = transport

    @property
    def path(self) -> Path:
        return self.cache_dir / GlobalFileNames.CATALOG_CACHE

    def read(self) -> dict[str, ModelInfo] | None:
        """Return the cached catalog, or None if there is no usable cache file."""
        if not self.path.exists():
            return None
        try:
            return catalog_from_dict(json.loads(self.path.read_text("utf-8")))
        except (OSError, json.JSONDecodeError, CatalogError, TypeError) as e:
            logger.warning("Ignoring unreadable catalog cache %s: %s", self.path, e)
            return None

    def write(self, models: dict[str, ModelInfo]) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(catalog_to_dict(models), ensure_ascii=False), "utf-8")
        os.replace(tmp_path, self.path)

    async def fetch(self) -> dict[str, ModelInfo]:
        """
        Fetch and parse the registry.

        Raises:
            CatalogFetchError: On transport errors, non-2xx status or bad JSON
            CatalogError: If the payload shape is wrong
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url)
        except httpx.HTTPError as e:
            raise CatalogFetchError(f"Registry request failed: {e}", self.url) from e

        if response.status_code >= 400:
            raise CatalogFetchError(
                f"Registry returned HTTP {response.status_code}",
                self.url,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise CatalogFetchError("Registry returned invalid JSON", self.url, response.status_code) from e

        try:
            return parse_registry_models(payload)
        except (TypeError, ValueError, AttributeError) as e:
            raise CatalogError("Registry response could not be parsed", {"error": str(e)}) from e

    async def refresh(self, notify: CatalogListener | None = None) -> dict[str, ModelInfo]:
        """
        Fetch the registry, replace the cache and notify.

        Never raises for fetch/parse/write failures; the notify callback is
        always invoked exactly once.

        Returns:
            The new catalog, or an empty mapping on failure
        """
        start_time = time.time()
        log_entry = CatalogLogEntry(
            timestamp=now_iso(),
            session_id=get_session_id(),
            source="registry",
            url=self.url,
        )

        models: dict[str, ModelInfo] = {}
        try:
            fetched = await self.fetch()
            self.write(fetched)
            models = fetched
            log_entry.model_count = len(models)
            log_entry.cache_written = True
            log_entry.latency_ms = int((time.time() - start_time) * 1000)
            catalog_logger.info(log_entry.to_json())
            logger.info("Catalog refreshed: %d models", len(models))
        except (CatalogError, OSError) as e:
            log_entry.latency_ms = int((time.time() - start_time) * 1000)
            log_entry.error = str(e)
            log_entry.error_type = type(e).__name__
            if isinstance(e, CatalogFetchError):
                log_entry.status_code = e.status_code
            catalog_logger.error(log_entry.to_json())
            logger.error("Catalog refresh failed: %s", e)

        if notify is not None:
            notify(models)
        return models
