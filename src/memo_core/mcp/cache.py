# memo_core/mcp/cache.py
"""
TTL response cache for MCP resource queries, with an optional disk snapshot.

The snapshot is loaded lazily on the first query and written back (debounced,
atomically) after every new entry. Concurrent requests for the same key share
one upstream call.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from memo_core.config.defaults import (
    CACHE_DIRNAME,
    CACHE_FILE_NAME,
    CACHE_PERSIST_DEBOUNCE,
    CACHE_SCHEMA_VERSION,
)
from memo_core.config.env_vars import EnvVar, get_env, is_set, resolve_home_dir
from memo_core.errors import CacheLoadError, CachePersistError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheEntry(BaseModel):
    """One cached value; ``expires_at`` is epoch milliseconds."""

    value: Any = None
    expires_at: float = Field(alias="expiresAt")

    model_config = {"populate_by_name": True}

    def is_live(self, now_ms: float) -> bool:
        return self.expires_at > now_ms


def default_cache_path() -> Path:
    """``$MEMO_HOME/cache/mcp.json`` (``~/.memo/cache/mcp.json`` by default)."""
    return resolve_home_dir() / CACHE_DIRNAME / CACHE_FILE_NAME


def is_disk_cache_enabled() -> bool:
    """Disk persistence is off under pytest unless forced on via env."""
    forced = (get_env(EnvVar.FORCE_MCP_DISK_CACHE) or "").strip()
    if forced == "1":
        return True
    if forced == "0":
        return False
    return not is_set(EnvVar.PYTEST_CURRENT_TEST)


def _now_ms() -> float:
    return time.time() * 1000


class ResponseCache:
    """
    In-memory TTL cache backed by a JSON snapshot on disk.

    Args:
        cache_path: Snapshot location (default: :func:`default_cache_path`)
        disk_enabled: Force disk persistence on/off; None checks the env
        debounce: Seconds between a write and the snapshot flush
        clock: Millisecond clock, injectable for TTL tests
    """

    def __init__(
        self,
        cache_path: Path | str | None = None,
        disk_enabled: bool | None = None,
        debounce: float = CACHE_PERSIST_DEBOUNCE,
        clock: Callable[[], float] = _now_ms,
    ):
        self._cache_path = Path(cache_path) if cache_path else None
        self._disk_enabled = disk_enabled
        self._debounce = debounce
        self._clock = clock

        self._entries: dict[str, CacheEntry] = {}
        self._loaded = False
        self._load_task: asyncio.Task[None] | None = None
        self._inflight: dict[str, asyncio.Future[Any]] = {}

        self._persist_handle: asyncio.TimerHandle | None = None
        self._persist_task: asyncio.Task[None] | None = None
        self._persist_requested = False

    # ── configuration ────────────────────────────────────────────────────────
    @property
    def cache_path(self) -> Path:
        return self._cache_path or default_cache_path()

    @property
    def disk_enabled(self) -> bool:
        if self._disk_enabled is not None:
            return self._disk_enabled
        return is_disk_cache_enabled()

    @property
    def size(self) -> int:
        return len(self._entries)

    # ── public API ───────────────────────────────────────────────────────────
    async def with_cached_value(
        self, key: str, ttl: float, loader: Callable[[], Awaitable[T]]
    ) -> T:
        """
        Return the cached value for ``key`` or load and cache it for ``ttl`` seconds.

        Loader errors reach every waiter and nothing is cached for them.
        """
        await self._ensure_loaded()

        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_live(self._clock()):
                return entry.value
            del self._entries[key]

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load_value(key, ttl, loader))
            self._inflight[key] = pending
            pending.add_done_callback(lambda f, k=key: self._forget_inflight(k, f))
        return await asyncio.shield(pending)

    async def flush(self) -> None:
        """Write pending changes now and wait until the snapshot is on disk."""
        self._cancel_debounce()
        while self._persist_requested or self._persist_in_progress():
            await asyncio.shield(self._start_drain())

    async def reset(self) -> None:
        """
        Forget everything in memory (the disk snapshot is reloaded next query).

        A write already running is allowed to finish first; pending ones are dropped.
        """
        self._cancel_debounce()
        self._persist_requested = False
        if self._persist_in_progress():
            await asyncio.shield(self._persist_task)
        self._entries.clear()
        self._loaded = False
        self._load_task = None
        self._inflight.clear()

    # ── loading ──────────────────────────────────────────────────────────────
    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if not self.disk_enabled:
            self._loaded = True
            return
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load_from_disk())
        await asyncio.shield(self._load_task)

    async def _load_from_disk(self) -> None:
        try:
            entries = await asyncio.to_thread(self._read_snapshot, self.cache_path)
            self._entries.update(
                (key, entry) for key, entry in entries.items() if key not in self._entries
            )
        except CacheLoadError as e:
            logger.debug("Ignoring MCP cache snapshot: %s", e)
        finally:
            self._prune_expired()
            self._loaded = True

    @staticmethod
    def _read_snapshot(path: Path) -> dict[str, CacheEntry]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CacheLoadError(f"Cannot read {path}: {e}") from e

        if not isinstance(data, dict) or data.get("version") != CACHE_SCHEMA_VERSION:
            raise CacheLoadError(f"Unsupported cache format in {path}")

        raw_entries = data.get("entries")
        if not isinstance(raw_entries, dict):
            return {}

        entries: dict[str, CacheEntry] = {}
        for key, raw in raw_entries.items():
            try:
                entries[key] = CacheEntry.model_validate(raw)
            except ValueError:
                logger.debug("Skipping malformed cache entry %s", key)
        return entries

    # ── in-flight loads ──────────────────────────────────────────────────────
    async def _load_value(
        self, key: str, ttl: float, loader: Callable[[], Awaitable[Any]]
    ) -> Any:
        value = await loader()
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl * 1000)
        self._schedule_persist()
        return value

    def _forget_inflight(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        if not future.cancelled():
            future.exception()

    # ── persistence ──────────────────────────────────────────────────────────
    def _prune_expired(self) -> None:
        now = self._clock()
        for key in [k for k, entry in self._entries.items() if not entry.is_live(now)]:
            del self._entries[key]

    def _schedule_persist(self) -> None:
        if not self.disk_enabled:
            return
        self._persist_requested = True
        if self._persist_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._persist_handle = loop.call_later(self._debounce, self._on_debounce)

    def _on_debounce(self) -> None:
        self._persist_handle = None
        self._start_drain()

    def _cancel_debounce(self) -> None:
        if self._persist_handle is not None:
            self._persist_handle.cancel()
            self._persist_handle = None

    def _persist_in_progress(self) -> bool:
        return self._persist_task is not None and not self._persist_task.done()

    def _start_drain(self) -> asyncio.Task[None]:
        """The running drain, or a new one; at most one writes at a time."""
        if not self._persist_in_progress():
            self._persist_task = asyncio.ensure_future(self._drain_persist_queue())
        return self._persist_task

    async def _drain_persist_queue(self) -> None:
        # requests made while a write runs are picked up by the next loop pass
        while self._persist_requested:
            self._persist_requested = False
            try:
                await self._persist_to_disk()
            except CachePersistError as e:
                logger.debug("MCP cache persist failed: %s", e)

    async def _persist_to_disk(self) -> None:
        if not self.disk_enabled:
            return
        self._prune_expired()
        try:
            snapshot = {
                "version": CACHE_SCHEMA_VERSION,
                "entries": {
                    key: entry.model_dump(mode="json", by_alias=True)
                    for key, entry in self._entries.items()
                },
            }
        except ValueError as e:
            raise CachePersistError(f"Cache entries are not serialisable: {e}") from e
        await asyncio.to_thread(self._write_snapshot, self.cache_path, snapshot)

    @staticmethod
    def _write_snapshot(path: Path, snapshot: dict[str, Any]) -> None:
        temp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(
                json.dumps(snapshot, indent=2, ensure_ascii=False, default=str),
                encoding="utf-8",
            )
            os.replace(temp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise CachePersistError(f"Cannot write {path}: {e}") from e
