"""Example executor plugin.

Load it with ``rapidcron worker --executor-module custom_executor`` (run from
this directory) or list it under ``executors.modules`` in rapidcron.yaml.
Then register a task of the new type:

    rapidcron task add cleanup --schedule "0 0 * * * *" --type cleanup \
        --payload '{"directory": "/tmp/exports", "max_age_hours": 24}'
"""

import time
from pathlib import Path

from pydantic import BaseModel, Field

from rapidcron import ExecutorOutput, executor


class CleanupPayload(BaseModel):
    directory: str
    max_age_hours: float = Field(default=24, gt=0)


@executor("cleanup", payload_model=CleanupPayload)
def cleanup(payload: CleanupPayload, timeout: float) -> ExecutorOutput:
    """Delete files older than max_age_hours. Runs in a thread."""
    root = Path(payload.directory)
    if not root.is_dir():
        return ExecutorOutput(ok=False, error=f"{root} is not a directory")

    cutoff = time.time() - payload.max_age_hours * 3600
    removed = []
    for path in root.iterdir():
        if path.is_file() and path.stat().st_mtime < cutoff:
            path.unlink()
            removed.append(path.name)

    return ExecutorOutput(ok=True, output=f"Removed {len(removed)} file(s): {', '.join(removed)}")
