"""Tests for executor plugins and dispatch."""

import asyncio
import json
import sys

import httpx
import pytest
from pydantic import BaseModel

from rapidcron.exceptions import ConfigurationError, ExecutorAlreadyRegistered
from rapidcron.executors import Dispatcher, ExecutorOutput, ExecutorRegistry, get_registered_executors
from rapidcron.executors.base import ERROR_CONFIGURATION, ERROR_TIMEOUT, ERROR_TRANSIENT, FAILED, SUCCESS
from rapidcron.executors.http_call import HttpPayload


class GreetPayload(BaseModel):
    name: str


@pytest.fixture
def registry():
    registry = ExecutorRegistry()

    @registry.register("greet", payload_model=GreetPayload)
    async def greet(payload: GreetPayload, timeout: float) -> ExecutorOutput:
        return ExecutorOutput(ok=True, output=f"hello {payload.name}")

    @registry.register("sync")
    def sync_plugin(payload: dict, timeout: float) -> int:
        return payload["value"] * 2

    @registry.register("refuse")
    async def refuse(payload: dict, timeout: float) -> ExecutorOutput:
        return ExecutorOutput(ok=False, output="partial", error="refused", exit_code=2)

    @registry.register("explode")
    async def explode(payload: dict, timeout: float) -> ExecutorOutput:
        raise RuntimeError("boom")

    @registry.register("misconfigured")
    async def misconfigured(payload: dict, timeout: float) -> ExecutorOutput:
        raise ConfigurationError("missing credentials")

    @registry.register("slow")
    async def slow(payload: dict, timeout: float) -> ExecutorOutput:
        await asyncio.sleep(10)
        return ExecutorOutput(ok=True)

    @registry.register("chatty")
    async def chatty(payload: dict, timeout: float) -> ExecutorOutput:
        return ExecutorOutput(ok=True, output="x" * 500)

    return registry


class TestRegistry:
    """Test plugin registration."""

    @pytest.mark.unit
    def test_names(self, registry):
        assert "greet" in registry
        assert registry.names() == sorted(registry.names())

    @pytest.mark.unit
    def test_duplicate_registration(self, registry):
        with pytest.raises(ExecutorAlreadyRegistered):

            @registry.register("greet")
            async def again(payload, timeout):
                pass

    @pytest.mark.unit
    def test_unregister(self, registry):
        registry.unregister("greet")
        assert "greet" not in registry
        # Unknown names are ignored
        registry.unregister("greet")

    @pytest.mark.unit
    def test_unknown_type(self, registry):
        with pytest.raises(ConfigurationError, match="Unknown task type 'nope'"):
            registry.get("nope")

    @pytest.mark.unit
    def test_builtin_executors_registered(self):
        assert {"command", "http"} <= set(get_registered_executors())


class TestDispatcher:
    """Test dispatch outcomes."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_async_plugin_success(self, registry):
        result = await Dispatcher(registry).execute("greet", {"name": "ada"}, 5)

        assert result.status == SUCCESS
        assert result.succeeded
        assert result.output_summary == "hello ada"
        assert result.duration_ms >= 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sync_plugin_return_value(self, registry):
        result = await Dispatcher(registry).execute("sync", {"value": 21}, 5)
        assert result.succeeded
        assert result.output_summary == "42"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reported_failure_is_transient(self, registry):
        result = await Dispatcher(registry).execute("refuse", {}, 5)

        assert result.status == FAILED
        assert result.error_kind == ERROR_TRANSIENT
        assert result.error_message == "refused"
        assert result.output_summary == "partial"
        assert result.exit_code == 2
        assert result.retryable

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exception_is_transient(self, registry):
        result = await Dispatcher(registry).execute("explode", {}, 5)
        assert result.error_kind == ERROR_TRANSIENT
        assert result.error_message == "RuntimeError: boom"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_configuration_error_is_not_retryable(self, registry):
        result = await Dispatcher(registry).execute("misconfigured", {}, 5)
        assert result.error_kind == ERROR_CONFIGURATION
        assert not result.retryable

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_type(self, registry):
        result = await Dispatcher(registry).execute("nope", {}, 5)
        assert result.error_kind == ERROR_CONFIGURATION
        assert "Unknown task type" in result.error_message

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_payload(self, registry):
        result = await Dispatcher(registry).execute("greet", {"nom": "ada"}, 5)
        assert result.error_kind == ERROR_CONFIGURATION

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, registry):
        result = await Dispatcher(registry).execute("slow", {}, 0.1)

        assert result.error_kind == ERROR_TIMEOUT
        assert result.retryable
        assert result.duration_ms < 5000

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_output_is_truncated(self, registry):
        result = await Dispatcher(registry, output_summary_limit=50).execute("chatty", {}, 5)

        assert len(result.output_summary) == 50
        assert result.output_summary.endswith("[truncated]")

    @pytest.mark.unit
    def test_validate(self, registry):
        validated = Dispatcher(registry).validate("greet", {"name": "ada"})
        assert validated == GreetPayload(name="ada")
        with pytest.raises(ConfigurationError):
            Dispatcher(registry).validate("greet", {})


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestCommandExecutor:
    """Test the built-in command executor."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self):
        result = await Dispatcher().execute("command", {"command": "echo hello"}, 5)

        assert result.succeeded
        assert result.output_summary == "hello"
        assert result.exit_code == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        result = await Dispatcher().execute("command", {"command": "echo oops; exit 3"}, 5)

        assert result.status == FAILED
        assert result.exit_code == 3
        assert result.output_summary == "oops"
        assert "code 3" in result.error_message

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_env(self):
        payload = {"command": "echo $GREETING", "env": {"GREETING": "hi"}}
        result = await Dispatcher().execute("command", payload, 5)
        assert result.output_summary == "hi"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        result = await Dispatcher().execute("command", {"command": "sleep 10"}, 0.2)
        assert result.error_kind == ERROR_TIMEOUT
        assert result.duration_ms < 5000

    @pytest.mark.unit
    def test_empty_command_rejected(self):
        with pytest.raises(ConfigurationError):
            Dispatcher().validate("command", {"command": ""})


class TestHttpPayload:
    """Test http executor payload validation."""

    @pytest.mark.unit
    def test_method_normalized(self):
        payload = HttpPayload(url="https://example.com", method="post")
        assert payload.method == "POST"

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "payload",
        [
            {"url": "ftp://example.com"},
            {"url": "https://example.com", "method": "FETCH"},
            {},
        ],
    )
    def test_rejected(self, payload):
        with pytest.raises(ConfigurationError):
            Dispatcher().validate("http", payload)


@pytest.fixture
def http_responses(monkeypatch):
    """Route the http executor through an in-process transport."""
    handlers = []
    real_client = httpx.AsyncClient

    def client(**kwargs):
        return real_client(transport=httpx.MockTransport(handlers[0]), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client)
    return handlers


class TestHttpExecutor:
    """Test the built-in http executor."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self, http_responses):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="pong")

        http_responses.append(handler)
        payload = {"url": "https://example.com/ping", "method": "post", "body": {"a": 1}}
        result = await Dispatcher().execute("http", payload, 5)

        assert result.succeeded
        assert result.exit_code == 200
        assert result.output_summary == "HTTP 200 OK\npong"
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {"a": 1}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_error_status_fails(self, http_responses):
        http_responses.append(lambda request: httpx.Response(503))

        result = await Dispatcher().execute("http", {"url": "https://example.com"}, 5)

        assert result.status == FAILED
        assert result.error_kind == ERROR_TRANSIENT
        assert result.exit_code == 503

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expected_status(self, http_responses):
        http_responses.append(lambda request: httpx.Response(404))

        payload = {"url": "https://example.com", "method": "DELETE", "expected_status": [204, 404]}
        result = await Dispatcher().execute("http", payload, 5)

        assert result.succeeded

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, http_responses):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        http_responses.append(handler)
        result = await Dispatcher().execute("http", {"url": "https://example.com"}, 5)

        assert result.error_kind == ERROR_TRANSIENT
        assert "connection refused" in result.error_message

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, http_responses):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        http_responses.append(handler)
        result = await Dispatcher().execute("http", {"url": "https://example.com"}, 5)

        assert result.error_kind == ERROR_TIMEOUT
