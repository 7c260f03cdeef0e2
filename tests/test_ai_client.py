"""
Tests for AI transports, model rotation and the retry policy.

No network: transports are scripted fakes, requests.post and the
Anthropic client are mocked.
"""

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from autofill.ai_client import (
    AIClient,
    ClaudeTransport,
    ModelRotation,
    OllamaTransport,
    build_ai_client,
)
from autofill.errors import AITransportFailure, FailureKind


# ============ Fixtures ============

class FakeTransport:
    """Plays back outcomes in order; records the model used per call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.models = []

    async def complete(self, prompt, model, timeout_ms, max_tokens):
        self.models.append(model)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class SlowTransport:
    def __init__(self):
        self.calls = 0

    async def complete(self, prompt, model, timeout_ms, max_tokens):
        self.calls += 1
        await asyncio.sleep(1)
        return "too late"


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def rate_limited():
    return AITransportFailure(FailureKind.RATE_LIMITED, "429")


def client_for(transport, models=("m1", "m2", "m3")):
    sleep = SleepRecorder()
    client = AIClient(transport, ModelRotation(models), max_attempts=3, backoff_base=1.0, sleep=sleep)
    return client, sleep


def run(coro):
    return asyncio.run(coro)


# ============ Retry policy ============

class TestRetryPolicy:
    def test_first_call_succeeds(self):
        transport = FakeTransport("Yes")
        client, sleep = client_for(transport)
        assert run(client.ask("q")) == "Yes"
        assert transport.models == ["m1"]
        assert sleep.delays == []

    def test_rate_limit_rotates_without_sleeping(self):
        """Should switch to the next model straight away."""
        transport = FakeTransport(rate_limited(), "Yes")
        client, sleep = client_for(transport)
        assert run(client.ask("q")) == "Yes"
        assert transport.models == ["m1", "m2"]
        assert sleep.delays == []

    def test_all_models_rate_limited(self):
        """Should make exactly three calls, then raise rate_limited."""
        transport = FakeTransport(rate_limited(), rate_limited(), rate_limited())
        client, sleep = client_for(transport)
        with pytest.raises(AITransportFailure) as exc:
            run(client.ask("q"))
        assert exc.value.kind == FailureKind.RATE_LIMITED
        assert transport.models == ["m1", "m2", "m3"]
        assert sleep.delays == []

    def test_single_model_backs_off(self):
        """Should double the delay between attempts when there is nothing to rotate to."""
        transport = FakeTransport(rate_limited(), rate_limited(), rate_limited())
        client, sleep = client_for(transport, models=["only"])
        with pytest.raises(AITransportFailure):
            run(client.ask("q"))
        assert len(transport.models) == 3
        assert sleep.delays == [1.0, 2.0]

    def test_transport_error_backs_off_on_same_model(self):
        transport = FakeTransport(AITransportFailure(FailureKind.TRANSPORT_ERROR), "Yes")
        client, sleep = client_for(transport)
        assert run(client.ask("q")) == "Yes"
        assert transport.models == ["m1", "m1"]
        assert sleep.delays == [1.0]

    @pytest.mark.parametrize("kind", [FailureKind.AUTH_ERROR, FailureKind.INVALID_REQUEST])
    def test_permanent_failure_not_retried(self, kind):
        transport = FakeTransport(AITransportFailure(kind), "never")
        client, sleep = client_for(transport)
        with pytest.raises(AITransportFailure) as exc:
            run(client.ask("q"))
        assert exc.value.kind == kind
        assert len(transport.models) == 1

    def test_time_box(self):
        """Should convert a slow call into a timeout failure."""
        transport = SlowTransport()
        client, sleep = client_for(transport)
        with pytest.raises(AITransportFailure) as exc:
            run(client.ask("q", timeout_ms=10))
        assert exc.value.kind == FailureKind.TIMEOUT
        assert transport.calls == 3

    def test_rotation_survives_between_questions(self):
        transport = FakeTransport(rate_limited(), "a", "b")
        client, _ = client_for(transport)
        run(client.ask("q1"))
        run(client.ask("q2"))
        assert transport.models == ["m1", "m2", "m2"]


class TestModelRotation:
    def test_cycles(self):
        rotation = ModelRotation(["a", "b"])
        assert rotation.current == "a"
        assert rotation.rotate() == "b"
        assert rotation.rotate() == "a"

    def test_needs_models(self):
        with pytest.raises(ValueError):
            ModelRotation([])


# ============ Transports ============

class TestOllamaTransport:
    def _response(self, status, payload=None):
        resp = MagicMock()
        resp.status_code = status
        resp.json.return_value = payload or {}
        return resp

    @patch("autofill.ai_client.requests.post")
    def test_success(self, mock_post):
        mock_post.return_value = self._response(200, {"response": "  Warsaw \n"})
        transport = OllamaTransport("http://localhost:11434/")
        assert run(transport.complete("q", "llama3.2:3b", 5000, 50)) == "Warsaw"

        url = mock_post.call_args[0][0]
        body = mock_post.call_args[1]["json"]
        assert url == "http://localhost:11434/api/generate"
        assert body["model"] == "llama3.2:3b"
        assert body["options"]["num_predict"] == 50
        assert mock_post.call_args[1]["timeout"] == 5.0

    @patch("autofill.ai_client.requests.post")
    def test_status_mapping(self, mock_post):
        mock_post.return_value = self._response(429)
        with pytest.raises(AITransportFailure) as exc:
            run(OllamaTransport("http://x").complete("q", "m", 1000, 10))
        assert exc.value.kind == FailureKind.RATE_LIMITED

        mock_post.return_value = self._response(500)
        with pytest.raises(AITransportFailure) as exc:
            run(OllamaTransport("http://x").complete("q", "m", 1000, 10))
        assert exc.value.kind == FailureKind.TRANSPORT_ERROR

    @patch("autofill.ai_client.requests.post")
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(AITransportFailure) as exc:
            run(OllamaTransport("http://x").complete("q", "m", 1000, 10))
        assert exc.value.kind == FailureKind.TIMEOUT


class TestClaudeTransport:
    def test_joins_text_blocks(self):
        fake = MagicMock()
        fake.messages.create = AsyncMock(return_value=SimpleNamespace(content=[
            SimpleNamespace(type="text", text=" Hello"),
            SimpleNamespace(type="text", text=" world "),
        ]))
        transport = ClaudeTransport("key", client=fake)
        assert run(transport.complete("q", "claude-x", 2000, 40)) == "Hello world"

        kwargs = fake.messages.create.call_args[1]
        assert kwargs["model"] == "claude-x"
        assert kwargs["max_tokens"] == 40
        assert kwargs["timeout"] == 2.0

    def test_rate_limit_mapped(self):
        response = httpx.Response(429, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        fake = MagicMock()
        fake.messages.create = AsyncMock(
            side_effect=anthropic.RateLimitError("rate limited", response=response, body=None)
        )
        with pytest.raises(AITransportFailure) as exc:
            run(ClaudeTransport("key", client=fake).complete("q", "m", 1000, 10))
        assert exc.value.kind == FailureKind.RATE_LIMITED


# ============ Factory ============

class TestBuildAIClient:
    def test_disabled(self):
        assert build_ai_client({"provider": "none"}) is None

    def test_claude_without_key(self):
        assert build_ai_client({"provider": "claude", "anthropic_api_key": "", "claude_models": ["m"]}) is None

    def test_no_models(self):
        assert build_ai_client({"provider": "ollama", "ollama_url": "http://x", "ollama_models": []}) is None

    def test_ollama(self):
        client = build_ai_client({
            "provider": "ollama",
            "ollama_url": "http://localhost:11434",
            "ollama_models": ["a", "b"],
            "max_attempts": 2,
        })
        assert isinstance(client.transport, OllamaTransport)
        assert client.rotation.models == ["a", "b"]
        assert client.max_attempts == 2
