"""LLM client - one chat completion per call via an OpenAI-compatible API.

Uses the openai SDK with the configured API base/key/model.  Every call is
bounded by `asyncio.wait_for`; transport errors are retried, and whatever
still fails surfaces as `LLMError`.
"""

from __future__ import annotations

import asyncio
import logging

from openai import AsyncOpenAI

from engine.errors import LLMError

logger = logging.getLogger("engine.llm")


class LLMClient:
    """Holds only plain settings so it can be pickled into worker processes."""

    def __init__(
        self,
        api_base: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        max_retries: int = 2,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> None:
        self.api_base = api_base
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw text of one completion; raises LLMError."""
        client = AsyncOpenAI(base_url=self.api_base or None, api_key=self.api_key)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        last_error: Exception | None = None
        for attempt in range(1 + self.max_retries):
            try:
                resp = await asyncio.wait_for(
                    client.chat.completions.create(
                        model=self.model,
                        messages=messages,
                        temperature=self.temperature,
                        max_tokens=self.max_tokens,
                    ),
                    timeout=self.timeout,
                )
                raw = resp.choices[0].message.content or ""
                if not raw.strip():
                    raise LLMError("empty completion")
                logger.info(
                    "LLM %s answered (attempt %d, %d chars)",
                    self.model, attempt + 1, len(raw),
                )
                return raw
            except asyncio.TimeoutError:
                last_error = LLMError(f"timed out after {self.timeout}s")
            except Exception as exc:
                last_error = exc
            logger.warning(
                "LLM call failed (attempt %d/%d): %s",
                attempt + 1, 1 + self.max_retries, last_error,
            )

        raise LLMError(f"LLM call failed: {last_error}") from last_error
