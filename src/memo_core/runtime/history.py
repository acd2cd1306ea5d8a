# memo_core/runtime/history.py
"""History sinks: where session events go (JSONL file by default)."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from memo_core.runtime.models import HistoryEvent, HistoryEventType, MessageRole


@runtime_checkable
class HistorySink(Protocol):
    """Receives every history event; ``flush``/``close`` are optional extras."""

    async def append(self, event: HistoryEvent) -> None: ...


class JsonlHistorySink:
    """Appends one JSON object per line; writes are serialised in call order."""

    def __init__(self, file_path: str | Path):
        self.file_path = Path(file_path)
        self._lock = asyncio.Lock()
        self._dir_ready = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _write_line(self, line: str) -> None:
        if not self._dir_ready:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self._dir_ready = True
        with self.file_path.open("a", encoding="utf-8") as f:
            f.write(line)

    async def append(self, event: HistoryEvent) -> None:
        if self._closed:
            raise RuntimeError("History sink is closed")
        line = json.dumps(event.to_dict(), ensure_ascii=False) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write_line, line)

    async def flush(self) -> None:
        """Wait for queued writes to land."""
        async with self._lock:
            pass

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.flush()


def create_history_event(
    session_id: str,
    type: HistoryEventType | str,
    turn: int | None = None,
    step: int | None = None,
    content: str | None = None,
    role: MessageRole | str | None = None,
    meta: dict[str, Any] | None = None,
) -> HistoryEvent:
    """Build a HistoryEvent stamped with the current UTC time."""
    return HistoryEvent(
        ts=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        session_id=session_id,
        type=HistoryEventType(type),
        turn=turn,
        step=step,
        content=content,
        role=MessageRole(role) if role is not None else None,
        meta=meta,
    )
