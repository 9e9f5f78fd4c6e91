"""Shell command executor."""

import asyncio
import os
from typing import Optional

from pydantic import BaseModel, Field

from .base import ExecutorOutput
from .registry import executor

TERMINATE_GRACE_SECONDS = 1.0


class CommandPayload(BaseModel):
    command: str = Field(min_length=1)
    env: Optional[dict[str, str]] = None
    cwd: Optional[str] = None


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_SECONDS)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()


@executor("command", payload_model=CommandPayload)
async def run_command(payload: CommandPayload, timeout: float) -> ExecutorOutput:
    """Run a shell command; a non-zero exit code is a failure."""
    env = None
    if payload.env:
        env = {**os.environ, **payload.env}

    proc = await asyncio.create_subprocess_shell(
        payload.command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        env=env,
        cwd=payload.cwd,
    )
    try:
        stdout, _ = await proc.communicate()
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    output = stdout.decode(errors="replace").strip() if stdout else ""
    if proc.returncode != 0:
        return ExecutorOutput(
            ok=False,
            output=output,
            error=f"Command exited with code {proc.returncode}",
            exit_code=proc.returncode,
        )
    return ExecutorOutput(ok=True, output=output, exit_code=0)
