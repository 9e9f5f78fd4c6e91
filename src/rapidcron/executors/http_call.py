"""HTTP call executor."""

from typing import Any, Optional, Union

import httpx
from pydantic import BaseModel, Field, field_validator

from ..exceptions import ExecutionTimeoutError, TransientExecutionError
from .base import ExecutorOutput
from .registry import executor

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


class HttpPayload(BaseModel):
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[Union[str, dict[str, Any], list[Any]]] = None
    expected_status: Optional[list[int]] = None

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        method = value.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {value}")
        return method

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value


@executor("http", payload_model=HttpPayload)
async def run_http(payload: HttpPayload, timeout: float) -> ExecutorOutput:
    """Make an HTTP request; error statuses are failures."""
    request_kwargs: dict[str, Any] = {"headers": payload.headers}
    if isinstance(payload.body, str):
        request_kwargs["content"] = payload.body
    elif payload.body is not None:
        request_kwargs["json"] = payload.body

    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            response = await client.request(payload.method, payload.url, **request_kwargs)
        except httpx.TimeoutException as e:
            raise ExecutionTimeoutError(f"HTTP request to {payload.url} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransientExecutionError(f"HTTP request to {payload.url} failed: {e}") from e

    summary = f"HTTP {response.status_code} {response.reason_phrase}".strip()
    if response.text:
        summary = f"{summary}\n{response.text}"

    if payload.expected_status:
        ok = response.status_code in payload.expected_status
    else:
        ok = response.status_code < 400

    return ExecutorOutput(
        ok=ok,
        output=summary,
        error=None if ok else f"Unexpected HTTP status {response.status_code}",
        exit_code=response.status_code,
    )
