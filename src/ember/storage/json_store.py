"""
storage/json_store.py — JSON file persistence for cached gateway state

Store[T] is the persistence port the state owner writes through:
    load() -> list[T]
    save(list[T])

JsonFileStore keeps one JSON array per file, validated with a pydantic
TypeAdapter. Concurrent save() calls are serialized by an asyncio.Lock and
every write lands atomically (temp file + os.replace), so a crash mid-write
never leaves a truncated cache behind. File I/O runs in the default
executor to keep the event loop free.

A missing or unreadable file loads as an empty list. The cache is
best-effort; the gateway is the source of truth and will resend.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generic, Optional, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError

from ember.models.domain import Briefing
from ember.observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

DEFAULT_BRIEFING_RETENTION_DAYS = 30


class Store(Protocol[T]):
    async def load(self) -> list[T]: ...

    async def save(self, items: list[T]) -> None: ...


class JsonFileStore(Generic[T]):
    """Single-file JSON array store for one model type."""

    def __init__(self, path: str | Path, item_type: type[T]) -> None:
        self._path = Path(path).expanduser()
        self._adapter: TypeAdapter[list[T]] = TypeAdapter(list[item_type])  # type: ignore[valid-type]
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> list[T]:
        loop = asyncio.get_running_loop()
        async with self._lock:
            return await loop.run_in_executor(None, self._read)

    async def save(self, items: list[T]) -> None:
        items = self._prepare(list(items))
        payload = self._adapter.dump_json(items, by_alias=True, indent=2)
        loop = asyncio.get_running_loop()
        async with self._lock:
            await loop.run_in_executor(None, self._write, payload)
        log.debug("storage.saved", path=str(self._path), count=len(items))

    async def clear(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            await loop.run_in_executor(None, self._remove)

    def _prepare(self, items: list[T]) -> list[T]:
        """Hook for subclasses to filter items before they are written."""
        return items

    # ── Blocking helpers (run in executor) ────────────────────────────────────

    def _read(self) -> list[T]:
        if not self._path.exists():
            return []
        try:
            return self._adapter.validate_json(self._path.read_bytes())
        except (OSError, ValidationError) as e:
            log.warning("storage.load_failed", path=str(self._path), error=str(e))
            return []

    def _write(self, payload: bytes) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _remove(self) -> None:
        self._path.unlink(missing_ok=True)


class BriefingFileStore(JsonFileStore[Briefing]):
    """Briefing cache that drops entries older than the retention window on save."""

    def __init__(
        self,
        path: str | Path,
        retention_days: int = DEFAULT_BRIEFING_RETENTION_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(path, Briefing)
        self._retention = timedelta(days=retention_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _prepare(self, items: list[Briefing]) -> list[Briefing]:
        cutoff = self._clock() - self._retention
        kept = [b for b in items if b.date > cutoff]
        if len(kept) != len(items):
            log.info("storage.briefings.pruned", dropped=len(items) - len(kept))
        return kept
