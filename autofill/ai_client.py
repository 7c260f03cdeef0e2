"""
AI transports for answer generation.

Two transports share one contract, `complete(prompt, model, timeout_ms,
max_tokens) -> str`, and raise AITransportFailure with a typed kind:
- ClaudeTransport: Anthropic Messages API (async SDK)
- OllamaTransport: local LLM over HTTP (requests, run in a worker thread)

AIClient wraps a transport with a time box, model rotation on rate limits
and exponential backoff, at most `max_attempts` calls per question.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

import anthropic
import requests

from autofill import config
from autofill.errors import AITransportFailure, FailureKind, ROTATING_FAILURES

logger = logging.getLogger(__name__)


class ModelRotation:
    """Ordered fallback models; the current index survives between calls."""

    def __init__(self, models: Sequence[str]):
        if not models:
            raise ValueError("ModelRotation needs at least one model")
        self.models = list(models)
        self.index = 0

    @property
    def current(self) -> str:
        return self.models[self.index]

    def rotate(self) -> str:
        self.index = (self.index + 1) % len(self.models)
        logger.info(f"Switching AI model to {self.current}")
        return self.current


class ClaudeTransport:
    """Anthropic Messages API."""

    def __init__(self, api_key: str, temperature: float = 0.1, client=None):
        self.temperature = temperature
        # SDK retries are disabled, AIClient owns the retry policy
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)

    async def complete(self, prompt: str, model: str, timeout_ms: int, max_tokens: int) -> str:
        try:
            response = await self.client.messages.create(
                model=model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                timeout=timeout_ms / 1000,
            )
        except anthropic.RateLimitError as e:
            raise AITransportFailure(FailureKind.RATE_LIMITED, str(e)) from e
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise AITransportFailure(FailureKind.AUTH_ERROR, str(e)) from e
        except (anthropic.BadRequestError, anthropic.UnprocessableEntityError) as e:
            raise AITransportFailure(FailureKind.INVALID_REQUEST, str(e)) from e
        except anthropic.NotFoundError as e:
            raise AITransportFailure(FailureKind.NOT_FOUND, str(e)) from e
        except anthropic.APITimeoutError as e:
            raise AITransportFailure(FailureKind.TIMEOUT, str(e)) from e
        except anthropic.APIConnectionError as e:
            raise AITransportFailure(FailureKind.TRANSPORT_ERROR, str(e)) from e
        except anthropic.APIStatusError as e:
            # 529 overloaded behaves like a rate limit
            kind = FailureKind.RATE_LIMITED if e.status_code == 529 else FailureKind.TRANSPORT_ERROR
            raise AITransportFailure(kind, str(e)) from e

        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()


class OllamaTransport:
    """Local LLM served by Ollama."""

    STATUS_KINDS = {
        400: FailureKind.INVALID_REQUEST,
        401: FailureKind.AUTH_ERROR,
        403: FailureKind.AUTH_ERROR,
        404: FailureKind.NOT_FOUND,
        429: FailureKind.RATE_LIMITED,
    }

    def __init__(self, url: str, temperature: float = 0.1):
        self.url = url.rstrip("/")
        self.temperature = temperature

    def _post(self, prompt: str, model: str, timeout_ms: int, max_tokens: int) -> str:
        try:
            resp = requests.post(f"{self.url}/api/generate", json={
                "model": model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": self.temperature, "num_predict": max_tokens},
            }, timeout=timeout_ms / 1000)
        except requests.Timeout as e:
            raise AITransportFailure(FailureKind.TIMEOUT, str(e)) from e
        except requests.RequestException as e:
            raise AITransportFailure(FailureKind.TRANSPORT_ERROR, str(e)) from e

        if resp.status_code != 200:
            kind = self.STATUS_KINDS.get(resp.status_code, FailureKind.TRANSPORT_ERROR)
            raise AITransportFailure(kind, f"Ollama HTTP {resp.status_code}")
        try:
            return (resp.json().get("response") or "").strip()
        except ValueError as e:
            raise AITransportFailure(FailureKind.TRANSPORT_ERROR, "Ollama returned invalid JSON") from e

    async def complete(self, prompt: str, model: str, timeout_ms: int, max_tokens: int) -> str:
        return await asyncio.to_thread(self._post, prompt, model, timeout_ms, max_tokens)


class AIClient:
    """Retrying front for a transport."""

    def __init__(self, transport, rotation: ModelRotation,
                 max_attempts: int = config.AI_CONFIG["max_attempts"],
                 backoff_base: float = config.AI_CONFIG["backoff_base"],
                 max_tokens: int = config.AI_CONFIG["max_tokens"],
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.transport = transport
        self.rotation = rotation
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.max_tokens = max_tokens
        self._sleep = sleep

    async def ask(self, prompt: str, timeout_ms: int = config.AI_TIMEOUT_SINGLE_MS,
                  max_tokens: Optional[int] = None) -> str:
        """
        Send a prompt and return the raw reply text.

        Rate limits rotate to the next untried model first and only then
        back off; auth and invalid-request failures are raised at once.
        """
        tried = {self.rotation.current}
        delay = self.backoff_base
        last_failure: Optional[AITransportFailure] = None

        for attempt in range(1, self.max_attempts + 1):
            model = self.rotation.current
            try:
                return await asyncio.wait_for(
                    self.transport.complete(prompt, model, timeout_ms, max_tokens or self.max_tokens),
                    timeout=timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                failure = AITransportFailure(FailureKind.TIMEOUT, f"{model} exceeded {timeout_ms} ms")
            except AITransportFailure as e:
                failure = e

            logger.warning(f"AI attempt {attempt}/{self.max_attempts} on {model} failed: {failure}")
            if not failure.retryable:
                raise failure
            last_failure = failure
            if attempt == self.max_attempts:
                break

            if failure.kind in ROTATING_FAILURES and self.rotation.rotate() not in tried:
                tried.add(self.rotation.current)
                continue
            await self._sleep(delay)
            delay *= 2

        raise last_failure


def build_ai_client(ai_config: Optional[dict] = None) -> Optional[AIClient]:
    """Create the configured AI client, or None when AI is disabled or has no key."""
    ai_config = ai_config or config.AI_CONFIG
    provider = (ai_config.get("provider") or "none").lower()

    if provider == "claude":
        api_key = ai_config.get("anthropic_api_key")
        if not api_key:
            logger.info("No ANTHROPIC_API_KEY set, AI answers disabled")
            return None
        transport = ClaudeTransport(api_key, temperature=ai_config.get("temperature", 0.1))
        models: List[str] = ai_config.get("claude_models") or []
    elif provider == "ollama":
        transport = OllamaTransport(ai_config["ollama_url"], temperature=ai_config.get("temperature", 0.1))
        models = ai_config.get("ollama_models") or []
    else:
        return None

    if not models:
        logger.warning(f"No models configured for provider '{provider}', AI answers disabled")
        return None
    return AIClient(
        transport,
        ModelRotation(models),
        max_attempts=ai_config.get("max_attempts", 3),
        backoff_base=ai_config.get("backoff_base", 1.0),
        max_tokens=ai_config.get("max_tokens", 300),
    )
