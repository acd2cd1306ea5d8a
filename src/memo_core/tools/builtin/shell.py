# memo_core/tools/builtin/shell.py
"""shell_command: run a command through the user's shell."""

from __future__ import annotations

import asyncio
import logging
import os

from mcp.types import CallToolResult
from pydantic import BaseModel, Field, field_validator

from memo_core.config.defaults import DEFAULT_SHELL_TIMEOUT
from memo_core.tools.models import NativeTool, create_native_tool, text_result

logger = logging.getLogger(__name__)


class ShellCommandInput(BaseModel):
    command: str = Field(min_length=1, description="Command line to run")
    workdir: str | None = Field(default=None, description="Working directory")
    timeout_ms: int | None = Field(default=None, gt=0, description="Timeout in ms")

    model_config = {"extra": "forbid"}

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        """Validate command is not blank."""
        if not v.strip():
            raise ValueError("command cannot be empty")
        return v


def _format_output(exit_code: int | None, output: str) -> str:
    return f"Exit code: {exit_code}\nOutput:\n{output}"


async def shell_command(tool_input: dict) -> CallToolResult:
    params = ShellCommandInput.model_validate(tool_input)
    timeout = (params.timeout_ms / 1000) if params.timeout_ms else DEFAULT_SHELL_TIMEOUT
    workdir = os.path.expanduser(params.workdir) if params.workdir else None

    try:
        proc = await asyncio.create_subprocess_shell(
            params.command,
            cwd=workdir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        return text_result(f"shell_command failed: {e}", is_error=True)

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return text_result(
            f"shell_command failed: command timed out after {timeout:g}s", is_error=True
        )
    except asyncio.CancelledError:
        proc.kill()
        raise

    output = stdout.decode("utf-8", errors="replace").rstrip("\n")
    logger.debug("shell_command exited with %s", proc.returncode)
    return text_result(_format_output(proc.returncode, output), is_error=proc.returncode != 0)


def create_shell_tool() -> NativeTool:
    return create_native_tool(
        name="shell_command",
        description=(
            "Runs a shell command and returns its output. Always set workdir when possible."
        ),
        execute=shell_command,
        input_model=ShellCommandInput,
        is_mutating=True,
    )
