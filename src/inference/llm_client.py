"""
Chat completion client for the LLM-backed stage collaborators.

Talks to OpenRouter through the OpenAI SDK. The stage runner already bounds
every call with the stage timeout, so the SDK's own retries are disabled and
tenacity makes at most one quick second attempt on transport errors.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Optional

from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, InternalServerError, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.models.llm import LLMResponse


OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# Only transport failures get a second attempt; cancellation from the stage
# timeout must propagate untouched
TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)


@dataclass
class ModelUsage:
    """Token totals for one model over the client's lifetime."""

    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0


class LLMClient:
    """
    JSON-mode chat completions against an OpenAI-compatible endpoint.

    Args:
        api_key: OpenRouter key; falls back to OPENROUTER_API_KEY
        base_url: Endpoint override (defaults to OpenRouter)
        request_timeout_s: Transport-level ceiling per HTTP request
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        request_timeout_s: float = 30.0,
    ):
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self.api_key:
            raise ValueError(
                "API key required for the LLM backend: set OPENROUTER_API_KEY "
                "or use INFERENCE_BACKEND=rules."
            )

        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=base_url or OPENROUTER_BASE_URL,
            timeout=request_timeout_s,
            max_retries=0,
            default_headers={
                "HTTP-Referer": os.getenv("OPENROUTER_SITE_URL", "http://localhost:8000"),
                "X-Title": os.getenv("OPENROUTER_SITE_NAME", "AE Safety Pipeline"),
            },
        )
        self._usage: dict[str, ModelUsage] = {}

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=0.5),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def complete(
        self,
        model: str,
        messages: list[dict],
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Request one JSON-object completion.

        Returns:
            LLMResponse with the raw completion text and token counts
        """
        request: dict = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        if max_tokens:
            request["max_tokens"] = max_tokens

        completion = await self.client.chat.completions.create(**request)
        choice = completion.choices[0]
        usage = completion.usage

        result = LLMResponse(
            content=choice.message.content or "",
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason or "stop",
        )

        totals = self._usage.setdefault(model, ModelUsage())
        totals.calls += 1
        totals.input_tokens += result.input_tokens
        totals.output_tokens += result.output_tokens
        return result

    def get_session_usage(self) -> dict:
        """Per-model call and token totals."""
        return {
            model: {
                "input_tokens": totals.input_tokens,
                "output_tokens": totals.output_tokens,
                "calls": totals.calls,
            }
            for model, totals in self._usage.items()
        }


class MockLLMClient:
    """
    Offline stand-in returning canned completions per model.

    Args:
        responses: Completion text keyed by model id; unknown models get an
            empty item list
        delay_s: Simulated inference time per call
    """

    def __init__(self, responses: Optional[dict[str, str]] = None, delay_s: float = 0.0):
        self.responses = responses or {}
        self.delay_s = delay_s
        self.calls: list[dict] = []

    async def complete(
        self,
        model: str,
        messages: list[dict],
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        self.calls.append({
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.delay_s:
            await asyncio.sleep(self.delay_s)

        content = self.responses.get(model, '{"items": []}')
        return LLMResponse(
            content=content,
            model=model,
            input_tokens=sum(len(m.get("content", "")) for m in messages) // 4,
            output_tokens=len(content) // 4,
        )
