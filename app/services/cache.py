"""TTL cache store shared by the upstream adapters.

Values are looked up through :meth:`CacheStore.get_or_fetch`; the store hands
back a fresh entry when one exists and otherwise awaits the supplied fetch
coroutine, persisting its result. Backends: a process-local dict, a JSON
document on disk (loaded once, rewritten atomically on each store) and a
per-key SQLAlchemy table for deployments that want row-level atomic writes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CacheEntryRecord
from ..errors import CacheCorruptionError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
    """A cached value together with the time it was stored and its TTL."""

    value: Any
    stored_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl

    def to_document(self) -> dict[str, Any]:
        return {"storedAt": self.stored_at, "ttl": self.ttl, "value": self.value}

    @classmethod
    def from_document(cls, data: Any) -> "CacheEntry | None":
        if not isinstance(data, dict):
            return None
        try:
            stored_at = float(data["storedAt"])
            ttl = float(data["ttl"])
        except (KeyError, TypeError, ValueError):
            return None
        return cls(value=data.get("value"), stored_at=stored_at, ttl=ttl)


class CacheBackend(Protocol):
    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, entry: CacheEntry) -> None: ...


class MemoryBackend:
    """Process-local entries; lost on restart."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry


class JsonFileBackend:
    """Whole-document JSON persistence with an in-memory working copy."""

    def __init__(self, path: Path | str):
        self._path = Path(path)
        self._entries: dict[str, Any] | None = None
        self._lock = asyncio.Lock()
        self._load_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> CacheEntry | None:
        entries = await self._ensure_loaded()
        return CacheEntry.from_document(entries.get(key))

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            entries = await self._ensure_loaded()
            entries[key] = entry.to_document()
            payload = json.dumps(entries, ensure_ascii=False)
            await asyncio.to_thread(self._write, payload)

    async def _ensure_loaded(self) -> dict[str, Any]:
        if self._entries is None:
            async with self._load_lock:
                if self._entries is None:
                    self._entries = await asyncio.to_thread(self._load)
        return self._entries

    def _load(self) -> dict[str, Any]:
        try:
            return self._read_document()
        except CacheCorruptionError as exc:
            logger.warning("Resetting cache document %s: %s", self._path, exc)
            self._reset()
            return {}

    def _read_document(self) -> dict[str, Any]:
        if self._path.is_dir():
            raise CacheCorruptionError("cache path is a directory")
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CacheCorruptionError(str(exc)) from exc
        if not isinstance(data, dict):
            raise CacheCorruptionError("cache document is not a JSON object")
        return data

    def _reset(self) -> None:
        if self._path.is_dir():
            shutil.rmtree(self._path, ignore_errors=True)
        try:
            self._write("{}")
        except OSError:
            logger.exception("Unable to reinitialise cache document %s", self._path)

    def _write(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temporary = self._path.with_name(f".{self._path.name}.tmp")
        temporary.write_text(payload, encoding="utf-8")
        os.replace(temporary, self._path)


class DatabaseBackend:
    """Per-key cache rows stored through SQLAlchemy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        namespace: str,
    ):
        self._session_factory = session_factory
        self._namespace = namespace

    async def get(self, key: str) -> CacheEntry | None:
        async with self._session_factory() as session:
            record = await session.get(CacheEntryRecord, (self._namespace, key))
            if record is None:
                return None
            return CacheEntry(
                value=record.value, stored_at=record.stored_at, ttl=record.ttl
            )

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(
                    CacheEntryRecord(
                        namespace=self._namespace,
                        key=key,
                        value=entry.value,
                        stored_at=entry.stored_at,
                        ttl=entry.ttl,
                    )
                )


class CacheStore:
    """Get-or-populate access to a cache backend with TTL semantics."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        name: str = "cache",
        clock: Clock = time.time,
    ):
        self._backend = backend
        self._name = name
        self._clock = clock
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    @property
    def name(self) -> str:
        return self._name

    async def get_or_fetch(
        self,
        key: str,
        ttl: float,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value for ``key`` or populate it via ``fetch``."""

        entry = await self._backend.get(key)
        if entry is not None and entry.is_valid(self._clock()):
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._populate(key, ttl, fetch))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    async def _populate(
        self,
        key: str,
        ttl: float,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        value = await fetch()
        entry = CacheEntry(value=value, stored_at=self._clock(), ttl=float(ttl))
        try:
            await self._backend.set(key, entry)
        except Exception:  # pragma: no cover - persistence failures only logged
            logger.exception("Failed to persist %s cache entry %s", self._name, key)
        return value

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the outcome as retrieved even when every waiter was cancelled.
        if not task.cancelled():
            task.exception()
