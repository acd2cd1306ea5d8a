# tests/mcp_client/test_cache.py
"""Tests for the MCP response cache: TTL, in-flight sharing and disk snapshots."""

from __future__ import annotations

import asyncio
import json
import threading

import pytest

from memo_core.mcp.cache import ResponseCache, default_cache_path, is_disk_cache_enabled

_write_snapshot = ResponseCache._write_snapshot


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds * 1000


class GatedWriter:
    """Snapshot writer that blocks in its worker thread until the gate opens."""

    def __init__(self):
        self.gate = threading.Event()
        self.started = threading.Event()
        self.written: list[list[str]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, path, snapshot):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            self.gate.wait(5)
            self.written.append(sorted(snapshot["entries"]))
            _write_snapshot(path, snapshot)
        finally:
            with self._lock:
                self.active -= 1


async def _until(flag: threading.Event) -> None:
    for _ in range(250):
        if flag.is_set():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("writer never started")


class CountingLoader:
    def __init__(self, value="payload"):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


@pytest.fixture
def clock():
    return FakeClock()


class TestTTL:
    @pytest.mark.asyncio
    async def test_hit_within_ttl(self, clock):
        cache = ResponseCache(disk_enabled=False, clock=clock)
        loader = CountingLoader()

        assert await cache.with_cached_value("k", 10, loader) == "payload"
        clock.advance(9.9)
        assert await cache.with_cached_value("k", 10, loader) == "payload"
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_reload_after_expiry(self, clock):
        cache = ResponseCache(disk_enabled=False, clock=clock)
        loader = CountingLoader()

        await cache.with_cached_value("k", 10, loader)
        clock.advance(10)
        await cache.with_cached_value("k", 10, loader)
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, clock):
        cache = ResponseCache(disk_enabled=False, clock=clock)
        first, second = CountingLoader("a"), CountingLoader("b")
        assert await cache.with_cached_value("k1", 10, first) == "a"
        assert await cache.with_cached_value("k2", 10, second) == "b"
        assert cache.size == 2


class TestInFlight:
    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_load(self):
        cache = ResponseCache(disk_enabled=False)
        release = asyncio.Event()
        calls = 0

        async def slow_loader():
            nonlocal calls
            calls += 1
            await release.wait()
            return {"items": [1, 2]}

        waiters = [
            asyncio.create_task(cache.with_cached_value("k", 60, slow_loader))
            for _ in range(4)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert all(result == {"items": [1, 2]} for result in results)

    @pytest.mark.asyncio
    async def test_loader_error_reaches_all_and_is_not_cached(self):
        cache = ResponseCache(disk_enabled=False)
        release = asyncio.Event()
        calls = 0

        async def failing_loader():
            nonlocal calls
            calls += 1
            await release.wait()
            raise RuntimeError("upstream down")

        waiters = [
            asyncio.create_task(cache.with_cached_value("k", 60, failing_loader))
            for _ in range(3)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert calls == 1
        assert cache.size == 0

        loader = CountingLoader("recovered")
        assert await cache.with_cached_value("k", 60, loader) == "recovered"


class TestDiskSnapshot:
    @pytest.mark.asyncio
    async def test_roundtrip(self, tmp_path):
        path = tmp_path / "cache" / "mcp.json"
        writer = ResponseCache(cache_path=path, disk_enabled=True)
        await writer.with_cached_value("list_resources:docs:", 60, CountingLoader({"n": 1}))
        await writer.flush()

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == 1
        entry = data["entries"]["list_resources:docs:"]
        assert entry["value"] == {"n": 1}
        assert "expiresAt" in entry

        reader = ResponseCache(cache_path=path, disk_enabled=True)
        loader = CountingLoader("fresh")
        assert await reader.with_cached_value("list_resources:docs:", 60, loader) == {"n": 1}
        assert loader.calls == 0

    @pytest.mark.asyncio
    async def test_debounced_write(self, tmp_path):
        path = tmp_path / "mcp.json"
        cache = ResponseCache(cache_path=path, disk_enabled=True, debounce=0.01)
        await cache.with_cached_value("a", 60, CountingLoader())
        await cache.with_cached_value("b", 60, CountingLoader())
        assert not path.exists()

        for _ in range(50):
            if path.exists():
                break
            await asyncio.sleep(0.02)
        await cache.flush()

        entries = json.loads(path.read_text(encoding="utf-8"))["entries"]
        assert set(entries) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_expired_entries_dropped_on_load(self, tmp_path, clock):
        path = tmp_path / "mcp.json"
        path.write_text(
            json.dumps(
                {
                    "version": 1,
                    "entries": {
                        "old": {"expiresAt": clock.now - 1, "value": "stale"},
                        "live": {"expiresAt": clock.now + 5000, "value": "good"},
                    },
                }
            ),
            encoding="utf-8",
        )
        cache = ResponseCache(cache_path=path, disk_enabled=True, clock=clock)
        old_loader = CountingLoader("reloaded")

        assert await cache.with_cached_value("old", 60, old_loader) == "reloaded"
        assert await cache.with_cached_value("live", 60, CountingLoader()) == "good"
        assert old_loader.calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        [
            json.dumps({"version": 2, "entries": {"k": {"expiresAt": 9e15, "value": "v2"}}}),
            "{not json",
            json.dumps(["version", 1]),
        ],
    )
    async def test_unusable_snapshot_ignored(self, tmp_path, content):
        path = tmp_path / "mcp.json"
        path.write_text(content, encoding="utf-8")
        cache = ResponseCache(cache_path=path, disk_enabled=True)
        loader = CountingLoader("loaded")
        assert await cache.with_cached_value("k", 60, loader) == "loaded"
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_malformed_entry_skipped(self, tmp_path):
        path = tmp_path / "mcp.json"
        path.write_text(
            json.dumps(
                {
                    "version": 1,
                    "entries": {
                        "bad": {"value": "no expiry"},
                        "good": {"expiresAt": 9e15, "value": "kept"},
                    },
                }
            ),
            encoding="utf-8",
        )
        cache = ResponseCache(cache_path=path, disk_enabled=True)
        assert await cache.with_cached_value("good", 60, CountingLoader()) == "kept"
        assert cache.size == 1

    @pytest.mark.asyncio
    async def test_unwritable_path_does_not_raise(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        cache = ResponseCache(cache_path=blocker / "mcp.json", disk_enabled=True)
        assert await cache.with_cached_value("k", 60, CountingLoader()) == "payload"
        await cache.flush()

    @pytest.mark.asyncio
    async def test_reset_reloads_from_disk(self, tmp_path):
        path = tmp_path / "mcp.json"
        cache = ResponseCache(cache_path=path, disk_enabled=True)
        await cache.with_cached_value("k", 60, CountingLoader("first"))
        await cache.flush()

        await cache.reset()
        assert cache.size == 0
        loader = CountingLoader("second")
        assert await cache.with_cached_value("k", 60, loader) == "first"
        assert loader.calls == 0


class TestDiskToggle:
    def test_disabled_under_pytest(self):
        assert is_disk_cache_enabled() is False

    def test_forced_on(self, monkeypatch):
        monkeypatch.setenv("MEMO_FORCE_MCP_DISK_CACHE", "1")
        assert is_disk_cache_enabled() is True

    def test_forced_off(self, monkeypatch):
        monkeypatch.delenv("PYTEST_CURRENT_TEST", raising=False)
        monkeypatch.setenv("MEMO_FORCE_MCP_DISK_CACHE", "0")
        assert is_disk_cache_enabled() is False

    def test_default_path_under_home(self, tmp_path):
        assert default_cache_path() == tmp_path / "memo-home" / "cache" / "mcp.json"

    @pytest.mark.asyncio
    async def test_env_default_never_writes(self, tmp_path):
        path = tmp_path / "mcp.json"
        cache = ResponseCache(cache_path=path)
        await cache.with_cached_value("k", 60, CountingLoader())
        await cache.flush()
        assert not path.exists()


class TestPersistQueue:
    @pytest.fixture
    def writer(self, monkeypatch):
        writer = GatedWriter()
        monkeypatch.setattr(ResponseCache, "_write_snapshot", staticmethod(writer))
        return writer

    @pytest.mark.asyncio
    async def test_write_during_write_runs_once_more(self, tmp_path, writer):
        path = tmp_path / "mcp.json"
        cache = ResponseCache(cache_path=path, disk_enabled=True, debounce=0)
        await cache.with_cached_value("a", 60, CountingLoader())
        await _until(writer.started)

        # the debounce for "b" fires while "a" is still being written
        await cache.with_cached_value("b", 60, CountingLoader())
        await asyncio.sleep(0.02)

        flushing = asyncio.create_task(cache.flush())
        await asyncio.sleep(0.02)
        assert not flushing.done()

        writer.gate.set()
        await flushing
        assert writer.written == [["a"], ["a", "b"]]
        assert writer.max_active == 1
        entries = json.loads(path.read_text(encoding="utf-8"))["entries"]
        assert set(entries) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_reset_waits_for_running_write(self, tmp_path, writer):
        path = tmp_path / "mcp.json"
        cache = ResponseCache(cache_path=path, disk_enabled=True, debounce=0)
        await cache.with_cached_value("a", 60, CountingLoader())
        await _until(writer.started)

        resetting = asyncio.create_task(cache.reset())
        await asyncio.sleep(0.02)
        assert not resetting.done()

        writer.gate.set()
        await resetting
        assert cache.size == 0

        await cache.with_cached_value("b", 60, CountingLoader())
        await cache.flush()
        assert writer.max_active == 1
        assert writer.written[-1] == ["a", "b"]


class TestLazyLoad:
    @pytest.mark.asyncio
    async def test_concurrent_first_queries_share_one_read(self, tmp_path, monkeypatch):
        path = tmp_path / "mcp.json"
        path.write_text(
            json.dumps({"version": 1, "entries": {"k0": {"expiresAt": 9e15, "value": "disk"}}}),
            encoding="utf-8",
        )
        reads = []
        original = ResponseCache._read_snapshot

        def counting_read(snapshot_path):
            reads.append(snapshot_path)
            return original(snapshot_path)

        monkeypatch.setattr(ResponseCache, "_read_snapshot", staticmethod(counting_read))
        cache = ResponseCache(cache_path=path, disk_enabled=True)
        loader = CountingLoader("fresh")

        results = await asyncio.gather(
            *(cache.with_cached_value(f"k{i}", 60, loader) for i in range(4))
        )
        assert results == ["disk", "fresh", "fresh", "fresh"]
        assert reads == [path]
        assert loader.calls == 3
