# tests/tools/test_filesystem.py
"""Tests for the read_file and list_dir builtin tools."""

from __future__ import annotations

import pytest

from memo_core.tools.builtin.filesystem import create_filesystem_tools, list_dir, read_file
from memo_core.tools.models import flatten_text


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("alpha\nbeta\ngamma\n", encoding="utf-8")
    return path


class TestReadFile:
    @pytest.mark.asyncio
    async def test_numbered_lines(self, sample_file):
        result = await read_file({"file_path": str(sample_file)})
        assert not result.isError
        assert flatten_text(result) == "L1: alpha\nL2: beta\nL3: gamma"

    @pytest.mark.asyncio
    async def test_offset_and_limit(self, sample_file):
        result = await read_file({"file_path": str(sample_file), "offset": 2, "limit": 1})
        assert flatten_text(result) == "L2: beta"

    @pytest.mark.asyncio
    async def test_offset_past_end(self, sample_file):
        result = await read_file({"file_path": str(sample_file), "offset": 10})
        assert result.isError
        assert "offset exceeds file length" in flatten_text(result)

    @pytest.mark.asyncio
    async def test_relative_path_rejected(self):
        result = await read_file({"file_path": "notes.txt"})
        assert result.isError
        assert flatten_text(result) == "file_path must be an absolute path"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        result = await read_file({"file_path": str(tmp_path / "missing.txt")})
        assert result.isError
        assert flatten_text(result).startswith("read_file failed:")

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_text("", encoding="utf-8")
        result = await read_file({"file_path": str(path)})
        assert not result.isError
        assert flatten_text(result) == ""

    @pytest.mark.asyncio
    async def test_long_lines_truncated(self, tmp_path):
        path = tmp_path / "wide.txt"
        path.write_text("x" * 800, encoding="utf-8")
        result = await read_file({"file_path": str(path)})
        assert flatten_text(result) == "L1: " + "x" * 500


class TestListDir:
    @pytest.fixture
    def tree(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "pkg").mkdir()
        (tmp_path / "src" / "pkg" / "deep.py").write_text("")
        (tmp_path / "src" / "main.py").write_text("")
        (tmp_path / "README.md").write_text("")
        return tmp_path

    @pytest.mark.asyncio
    async def test_default_depth(self, tree):
        result = await list_dir({"dir_path": str(tree)})
        lines = flatten_text(result).splitlines()
        assert lines[0] == f"Absolute path: {tree}"
        assert lines[1:] == ["README.md", "src/", "  main.py", "  pkg/"]

    @pytest.mark.asyncio
    async def test_depth_three(self, tree):
        result = await list_dir({"dir_path": str(tree), "depth": 3})
        assert "    deep.py" in flatten_text(result).splitlines()

    @pytest.mark.asyncio
    async def test_limit_adds_more_marker(self, tree):
        result = await list_dir({"dir_path": str(tree), "limit": 2})
        lines = flatten_text(result).splitlines()
        assert lines[1:] == ["README.md", "src/", "More than 2 entries found"]

    @pytest.mark.asyncio
    async def test_offset_past_end(self, tree):
        result = await list_dir({"dir_path": str(tree), "offset": 50})
        assert result.isError

    @pytest.mark.asyncio
    async def test_empty_dir(self, tmp_path):
        result = await list_dir({"dir_path": str(tmp_path)})
        assert flatten_text(result) == f"Absolute path: {tmp_path}"

    @pytest.mark.asyncio
    async def test_missing_dir(self, tmp_path):
        result = await list_dir({"dir_path": str(tmp_path / "nope")})
        assert result.isError
        assert flatten_text(result).startswith("list_dir failed:")


class TestToolDefinitions:
    def test_read_only_parallel_tools(self):
        tools = {tool.name: tool for tool in create_filesystem_tools()}
        assert set(tools) == {"read_file", "list_dir"}
        for tool in tools.values():
            assert tool.supports_parallel_tool_calls
            assert not tool.is_mutating
        assert tools["read_file"].input_schema["required"] == ["file_path"]
