"""Result types shared by executor plugins, the dispatcher and the retry controller."""

from dataclasses import asdict, dataclass
from typing import Optional

SUCCESS = "success"
FAILED = "failed"

ERROR_CONFIGURATION = "configuration"
ERROR_TRANSIENT = "transient"
ERROR_TIMEOUT = "timeout"
ERROR_LEASE_EXPIRED = "lease_expired"


@dataclass
class ExecutorOutput:
    """What a plugin returns on completion.

    Plugins report failures either by raising or by returning ok=False.
    """

    ok: bool
    output: str = ""
    error: Optional[str] = None
    exit_code: Optional[int] = None


@dataclass
class ExecutionResult:
    """Outcome of one attempt as seen by the engine."""

    status: str
    output_summary: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    exit_code: Optional[int] = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS

    @property
    def retryable(self) -> bool:
        return not self.succeeded and self.error_kind != ERROR_CONFIGURATION

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def failure(cls, error_kind: str, message: str, duration_ms: int = 0) -> "ExecutionResult":
        return cls(status=FAILED, error_message=message, error_kind=error_kind, duration_ms=duration_ms)


def truncate(text: Optional[str], limit: int) -> Optional[str]:
    """Cut text to limit characters, marking the cut."""
    if text is None or len(text) <= limit:
        return text
    marker = "... [truncated]"
    return text[: max(limit - len(marker), 0)] + marker
