# memo_core/tools/native.py
"""Registry of in-process tools."""

from __future__ import annotations

from collections.abc import Iterable

from memo_core.tools.models import NativeTool, Tool


class NativeToolRegistry:
    """Name -> NativeTool map. Registering an existing name replaces it."""

    def __init__(self) -> None:
        self._tools: dict[str, NativeTool] = {}

    def register(self, tool: NativeTool) -> None:
        self._tools[tool.name] = tool

    def register_many(self, tools: Iterable[NativeTool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> NativeTool | None:
        return self._tools.get(name)

    def get_all(self) -> list[NativeTool]:
        return list(self._tools.values())

    def to_registry(self) -> dict[str, Tool]:
        return dict(self._tools)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def size(self) -> int:
        return len(self._tools)
