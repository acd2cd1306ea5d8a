# memo_core/tools/builtin/filesystem.py
"""Read-only filesystem tools: read_file and list_dir."""

from __future__ import annotations

import asyncio
import os
from collections import deque
from pathlib import Path

from mcp.types import CallToolResult
from pydantic import BaseModel, Field

from memo_core.config.defaults import DEFAULT_READ_FILE_LIMIT
from memo_core.tools.models import NativeTool, create_native_tool, text_result

MAX_LINE_LENGTH = 500
LIST_DIR_DEFAULT_LIMIT = 25
LIST_DIR_DEFAULT_DEPTH = 2


# ──────────────────────────────────────────────────────────────────────────────
# read_file
# ──────────────────────────────────────────────────────────────────────────────
class ReadFileInput(BaseModel):
    file_path: str = Field(min_length=1, description="Absolute path of the file")
    offset: int = Field(default=1, gt=0, description="1-indexed first line")
    limit: int = Field(default=DEFAULT_READ_FILE_LIMIT, gt=0, description="Max lines")

    model_config = {"extra": "forbid"}


def _format_lines(content: str, offset: int, limit: int) -> str:
    lines = content.splitlines()
    start = offset - 1
    if start >= len(lines):
        raise ValueError("offset exceeds file length")
    selected = lines[start : start + limit]
    return "\n".join(
        f"L{number}: {line[:MAX_LINE_LENGTH]}"
        for number, line in enumerate(selected, start=offset)
    )


async def read_file(tool_input: dict) -> CallToolResult:
    params = ReadFileInput.model_validate(tool_input)
    raw_path = params.file_path.strip()
    if not os.path.isabs(raw_path):
        return text_result("file_path must be an absolute path", is_error=True)

    path = Path(os.path.normpath(raw_path))
    try:
        content = await asyncio.to_thread(
            path.read_text, encoding="utf-8", errors="replace"
        )
        if not content:
            return text_result("")
        return text_result(_format_lines(content, params.offset, params.limit))
    except (OSError, ValueError) as e:
        return text_result(f"read_file failed: {e}", is_error=True)


# ──────────────────────────────────────────────────────────────────────────────
# list_dir
# ──────────────────────────────────────────────────────────────────────────────
class ListDirInput(BaseModel):
    dir_path: str = Field(min_length=1, description="Absolute path of the directory")
    offset: int = Field(default=1, gt=0, description="1-indexed first entry")
    limit: int = Field(default=LIST_DIR_DEFAULT_LIMIT, gt=0, description="Max entries")
    depth: int = Field(default=LIST_DIR_DEFAULT_DEPTH, gt=0, description="Levels to descend")

    model_config = {"extra": "forbid"}


def _entry_suffix(path: Path) -> str:
    if path.is_symlink():
        return "@"
    if path.is_dir():
        return "/"
    if path.is_file():
        return ""
    return "?"


def _walk(root: Path, depth: int) -> list[str]:
    """Breadth-first listing; each line is indented two spaces per level."""
    entries: list[str] = []
    queue: deque[tuple[Path, int, int]] = deque([(root, depth, 0)])
    while queue:
        current, remaining, level = queue.popleft()
        for child in sorted(current.iterdir(), key=lambda p: p.name):
            suffix = _entry_suffix(child)
            entries.append(f"{'  ' * level}{child.name}{suffix}")
            if suffix == "/" and remaining > 1:
                queue.append((child, remaining - 1, level + 1))
    return entries


async def list_dir(tool_input: dict) -> CallToolResult:
    params = ListDirInput.model_validate(tool_input)
    raw_path = params.dir_path.strip()
    if not os.path.isabs(raw_path):
        return text_result("dir_path must be an absolute path", is_error=True)

    root = Path(os.path.normpath(raw_path))
    header = f"Absolute path: {root}"
    try:
        entries = await asyncio.to_thread(_walk, root, params.depth)
    except OSError as e:
        return text_result(f"list_dir failed: {e}", is_error=True)

    if not entries:
        return text_result(header)

    start = params.offset - 1
    if start >= len(entries):
        return text_result("offset exceeds directory entry count", is_error=True)

    lines = [header, *entries[start : start + params.limit]]
    if start + params.limit < len(entries):
        lines.append(f"More than {params.limit} entries found")
    return text_result("\n".join(lines))


# ──────────────────────────────────────────────────────────────────────────────
# Tool definitions
# ──────────────────────────────────────────────────────────────────────────────
def create_filesystem_tools() -> list[NativeTool]:
    return [
        create_native_tool(
            name="read_file",
            description="Reads a local file with 1-indexed line numbers.",
            execute=read_file,
            input_model=ReadFileInput,
            supports_parallel_tool_calls=True,
        ),
        create_native_tool(
            name="list_dir",
            description=(
                "Lists entries in a local directory with 1-indexed entry numbers "
                "and simple type labels."
            ),
            execute=list_dir,
            input_model=ListDirInput,
            supports_parallel_tool_calls=True,
        ),
    ]
