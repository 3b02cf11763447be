"""Key -> JSON document store: backends plus retry/backoff and local-cache fallback."""

from __future__ import annotations

import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog

from pariledger.errors import StorageError, StorageUnavailable

log = structlog.get_logger(__name__)

Document = dict[str, Any] | list[Any]


class ObjectStore(Protocol):
    """Contract consumed by the ledger. `get` on a missing key returns None."""

    async def get(self, key: str) -> Document | None: ...
    async def put(self, key: str, doc: Document) -> None: ...


class MemoryObjectStore:
    """In-process store. Documents are deep-copied so callers never share state."""

    def __init__(self) -> None:
        self._docs: dict[str, Document] = {}

    async def get(self, key: str) -> Document | None:
        doc = self._docs.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(self, key: str, doc: Document) -> None:
        self._docs[key] = copy.deepcopy(doc)

    def keys(self) -> list[str]:
        return sorted(self._docs)


class FileObjectStore:
    """One JSON file per key under root. Writes go through a temp file + replace."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / key

    async def get(self, key: str) -> Document | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"read {key}: {e}") from e

    async def put(self, key: str, doc: Document) -> None:
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"write {key}: {e}") from e


class HttpObjectStore:
    """Bucket-style HTTP object storage: GET/PUT {base_url}/{bucket}/{key}."""

    def __init__(
        self,
        base_url: str,
        bucket: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self._headers = {"Cache-Control": "no-cache"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._transport = transport

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{self.bucket}/{key}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, headers=self._headers, transport=self._transport)

    async def get(self, key: str) -> Document | None:
        try:
            async with self._client() as client:
                resp = await client.get(self._url(key))
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise StorageError(f"GET {key}: {e}") from e

    async def put(self, key: str, doc: Document) -> None:
        try:
            async with self._client() as client:
                resp = await client.put(
                    self._url(key),
                    content=json.dumps(doc),
                    headers={"Content-Type": "application/json"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"PUT {key}: {e}") from e


class ResilientObjectStore:
    """
    Wrap a primary store with exponential-backoff retries and a local cache.
    Successful calls are mirrored into the cache; when the primary exhausts its retries the
    cache serves reads and absorbs writes. Keys written to the cache alone stay pending: they
    are read from the cache and pushed back to the primary before it serves them again.
    Raises StorageUnavailable only if both fail.
    """

    def __init__(
        self,
        primary: ObjectStore,
        cache: ObjectStore | None = None,
        *,
        max_retries: int = 3,
        base_delay_sec: float = 0.5,
        max_delay_sec: float = 8.0,
    ) -> None:
        self.primary = primary
        self.cache = cache if cache is not None else MemoryObjectStore()
        self.max_retries = max_retries
        self.base_delay_sec = base_delay_sec
        self.max_delay_sec = max_delay_sec
        self.pending: set[str] = set()

    async def _with_retries(self, op: str, key: str, call):
        delay = self.base_delay_sec
        attempt = 0
        while True:
            try:
                return await call()
            except StorageError as e:
                if attempt >= self.max_retries:
                    log.warning("storage_retries_exhausted", op=op, key=key, attempts=attempt + 1, error=str(e))
                    raise
                attempt += 1
                log.info("storage_retry", op=op, key=key, attempt=attempt, delay=delay, error=str(e))
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_delay_sec)

    async def get(self, key: str) -> Document | None:
        if key in self.pending and not await self._flush_key(key):
            return await self._cache_get(key)
        try:
            doc = await self._with_retries("get", key, lambda: self.primary.get(key))
        except StorageError:
            return await self._cache_get(key)
        if doc is not None:
            await self._cache_put(key, doc, strict=False)
        return doc

    async def put(self, key: str, doc: Document) -> None:
        try:
            await self._with_retries("put", key, lambda: self.primary.put(key, doc))
        except StorageError:
            log.warning("storage_fallback", op="put", key=key)
            await self._cache_put(key, doc, strict=True)
            self.pending.add(key)
            return
        self.pending.discard(key)
        await self._cache_put(key, doc, strict=False)

    async def flush(self) -> int:
        """Push every pending key to the primary. Returns how many are still pending."""
        for key in sorted(self.pending):
            await self._flush_key(key)
        return len(self.pending)

    async def _flush_key(self, key: str) -> bool:
        try:
            doc = await self.cache.get(key)
        except StorageError as e:
            log.error("storage_flush_failed", key=key, error=str(e))
            return False
        if doc is None:
            log.error("storage_flush_failed", key=key, error="not cached")
            return False
        try:
            await self._with_retries("flush", key, lambda: self.primary.put(key, doc))
        except StorageError:
            return False
        self.pending.discard(key)
        log.info("storage_flushed", key=key)
        return True

    async def _cache_get(self, key: str) -> Document | None:
        log.warning("storage_fallback", op="get", key=key)
        try:
            doc = await self.cache.get(key)
        except StorageError as e:
            log.error("storage_unavailable", op="get", key=key, error=str(e))
            raise StorageUnavailable("Storage is unavailable, please try again later") from e
        # An uncached key cannot be told apart from a missing one while the primary is down.
        if doc is None:
            log.error("storage_unavailable", op="get", key=key, error="not cached")
            raise StorageUnavailable("Storage is unavailable, please try again later")
        return doc

    async def _cache_put(self, key: str, doc: Document, strict: bool) -> None:
        try:
            await self.cache.put(key, doc)
        except StorageError as e:
            if strict:
                log.error("storage_unavailable", op="put", key=key, error=str(e))
                raise StorageUnavailable("Storage is unavailable, please try again later") from e
            log.warning("cache_write_failed", key=key, error=str(e))


def build_object_store(settings: Any) -> ObjectStore:
    """Create the configured backend wrapped with retries and a local file cache."""
    backend = settings.storage_backend
    if backend == "memory":
        return MemoryObjectStore()
    if backend == "http":
        if not settings.http_base_url:
            raise ValueError("storage.http_base_url is required for the http backend")
        primary: ObjectStore = HttpObjectStore(
            settings.http_base_url,
            settings.http_bucket,
            token=settings.http_token,
            timeout=settings.storage_timeout_sec,
        )
        cache: ObjectStore = FileObjectStore(settings.cache_dir)
    elif backend == "file":
        primary = FileObjectStore(settings.data_dir)
        cache = MemoryObjectStore()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")
    return ResilientObjectStore(
        primary,
        cache,
        max_retries=settings.max_retries,
        base_delay_sec=settings.retry_base_delay_sec,
        max_delay_sec=settings.retry_max_delay_sec,
    )
