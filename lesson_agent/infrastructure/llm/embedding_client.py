from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, List, Optional

import httpx
import structlog

from lesson_agent.domain.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(__name__)


class OpenAICompatibleEmbeddingProvider(IEmbeddingProvider):
    """
    Embeddings over an OpenAI-compatible `/embeddings` endpoint (DashScope by default).
    Uses one shared httpx.AsyncClient and a TTL-bounded LRU cache keyed by text.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        dimensions: int,
        *,
        timeout_seconds: float = 30.0,
        cache_ttl_seconds: int = 3600,
        cache_max_entries: int = 2048,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._dimensions = int(dimensions)
        self._timeout_seconds = float(timeout_seconds)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._cache: "OrderedDict[str, tuple[list[float], float]]" = OrderedDict()
        self._cache_ttl_seconds = max(0, int(cache_ttl_seconds))
        self._cache_max_entries = max(0, int(cache_max_entries))
        self._cache_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Any) -> "OpenAICompatibleEmbeddingProvider":
        return cls(
            api_key=settings.EMBEDDING_API_KEY,
            base_url=settings.EMBEDDING_BASE_URL,
            model=settings.EMBEDDING_MODEL,
            dimensions=settings.EMBEDDING_DIMENSION,
            timeout_seconds=settings.EMBEDDING_TIMEOUT_SECONDS,
            cache_ttl_seconds=settings.EMBEDDING_CACHE_TTL_SECONDS,
            cache_max_entries=settings.EMBEDDING_CACHE_MAX_ENTRIES,
        )

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def embedding_dimensions(self) -> int:
        return self._dimensions

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._api_key}",
                },
                timeout=self._timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _cache_get(self, text: str) -> Optional[list[float]]:
        with self._cache_lock:
            cached = self._cache.get(text)
            if cached is None:
                return None
            vector, expires_at = cached
            if expires_at < time.monotonic():
                self._cache.pop(text, None)
                return None
            self._cache.move_to_end(text)
            return vector

    def _cache_put(self, text: str, vector: list[float]) -> None:
        if self._cache_max_entries == 0 or self._cache_ttl_seconds == 0:
            return
        with self._cache_lock:
            self._cache[text] = (vector, time.monotonic() + self._cache_ttl_seconds)
            self._cache.move_to_end(text)
            while len(self._cache) > self._cache_max_entries:
                self._cache.popitem(last=False)

    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValueError("cannot embed empty text")
        if not (api_key or self._api_key):
            raise RuntimeError("EMBEDDING_API_KEY is not configured")

        cached = self._cache_get(cleaned)
        if cached is not None:
            return list(cached)

        response = await self._get_client().post(
            "/embeddings",
            headers={"Authorization": f"Bearer {api_key}"} if api_key else None,
            json={
                "model": self._model,
                "input": cleaned,
                "dimensions": self._dimensions,
                "encoding_format": "float",
            },
        )
        response.raise_for_status()
        data = response.json().get("data") or []
        if not data or not isinstance(data[0].get("embedding"), list):
            raise RuntimeError("embedding response carried no vector")
        vector = [float(value) for value in data[0]["embedding"]]

        self._cache_put(cleaned, vector)
        logger.debug("embedding_created", model=self._model, dimensions=len(vector))
        return vector
