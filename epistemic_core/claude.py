"""Claude API client with bounded retry and a circuit breaker."""

import asyncio
import json
import logging
import time

import httpx

from epistemic_core.config import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_BASE_URL,
    CIRCUIT_FAILURE_THRESHOLD,
    CIRCUIT_RESET_SECONDS,
    LLM_BACKOFF_BASE_SECONDS,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
    MODEL_ANALYSIS,
    MODEL_FAST,
)
from epistemic_core.errors import CircuitOpenError, CollaboratorError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Opens after `failure_threshold` consecutive failures; half-opens after `reset_seconds`."""

    def __init__(self, failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD, reset_seconds: float = CIRCUIT_RESET_SECONDS):
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self.failures = 0
        self.opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        if self.opened_at is None:
            return False
        if time.monotonic() - self.opened_at >= self.reset_seconds:
            # half-open: let one call through
            return False
        return True

    def before_call(self):
        if self.is_open:
            raise CircuitOpenError(
                f"language collaborator circuit open after {self.failures} consecutive failures"
            )

    def record_success(self):
        if self.opened_at is not None:
            logger.info("Claude circuit closed")
        self.failures = 0
        self.opened_at = None

    def record_failure(self):
        self.failures += 1
        if self.failures >= self.failure_threshold:
            if self.opened_at is None:
                logger.warning("Claude circuit opened after %d failures", self.failures)
            self.opened_at = time.monotonic()


breaker = CircuitBreaker()


async def call_claude(
    system: str,
    user_message: str,
    model: str | None = None,
    max_tokens: int = 4096,
    max_retries: int = LLM_MAX_RETRIES,
) -> str:
    """Call Claude API and return the text response."""
    model = model or MODEL_FAST
    breaker.before_call()

    attempt = 0
    while True:
        try:
            async with httpx.AsyncClient(timeout=LLM_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    f"{ANTHROPIC_BASE_URL}v1/messages",
                    headers={
                        "x-api-key": ANTHROPIC_API_KEY,
                        "anthropic-version": "2023-06-01",
                        "content-type": "application/json",
                    },
                    json={
                        "model": model,
                        "max_tokens": max_tokens,
                        "system": system,
                        "messages": [{"role": "user", "content": user_message}],
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            breaker.record_failure()
            attempt += 1
            if attempt > max_retries or breaker.is_open:
                raise CollaboratorError(f"Claude call failed after {attempt} attempt(s): {e}") from e
            backoff = LLM_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
            logger.warning("Claude call failed (retry %d/%d in %.1fs): %s", attempt, max_retries, backoff, e)
            await asyncio.sleep(backoff)
            continue

        breaker.record_success()
        break

    content = data.get("content", [])
    return "".join(block["text"] for block in content if block.get("type") == "text")


def parse_json(text: str) -> dict | list:
    # Strip markdown code fences if present
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise CollaboratorError(f"malformed JSON from Claude: {e}") from e


async def call_claude_json(
    system: str,
    user_message: str,
    model: str | None = None,
) -> dict | list:
    """Call Claude and parse the response as JSON."""
    return parse_json(await call_claude(system, user_message, model=model))


async def call_analysis(system: str, user_message: str) -> dict:
    """Call Claude with the analysis model for whole belief system reviews."""
    result = await call_claude_json(system, user_message, model=MODEL_ANALYSIS)
    if not isinstance(result, dict):
        raise CollaboratorError("analysis response is not a JSON object")
    return result
