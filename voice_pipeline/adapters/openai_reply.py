"""
Reply generation with OpenAI chat completions.
"""
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from logging_setup import get_logger, Component
from ..errors import AdapterError, AdapterTimeout, Stage
from ..session import Turn

logger = get_logger(Component.LLM)


def build_messages(system_prompt: str, transcript: str, history: Sequence[Turn]) -> List[Dict[str, str]]:
    """System prompt, then prior turns as user/assistant pairs (oldest first), then the new transcript."""
    messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for turn in history:
        messages.append({"role": "user", "content": turn.transcript})
        messages.append({"role": "assistant", "content": turn.reply_text})
    messages.append({"role": "user", "content": transcript})
    return messages


class OpenAIReplyGenerator:
    provider = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        system_prompt: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        base_url: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        if client is None and not api_key:
            raise ValueError("OpenAI reply generation requires a valid API key in OPENAI_API_KEY")
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self._system_prompt = system_prompt
        self._model = model
        self._temperature = temperature

    async def generate_reply(self, transcript: str, history: Sequence[Turn]) -> str:
        messages = build_messages(self._system_prompt, transcript, history)

        t_start = time.perf_counter()
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
            )
        except openai.APITimeoutError as exc:
            raise AdapterTimeout("OpenAI request timed out", stage=Stage.GENERATE, provider=self.provider) from exc
        except openai.APIStatusError as exc:
            raise AdapterError(
                f"OpenAI API error: {exc.status_code}",
                stage=Stage.GENERATE,
                provider=self.provider,
                status=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            raise AdapterError(
                "OpenAI connection error",
                stage=Stage.GENERATE,
                provider=self.provider,
            ) from exc

        reply = ""
        if completion.choices:
            reply = completion.choices[0].message.content or ""
        logger.info(
            "LLM call completed",
            model=self._model,
            history_turns=len(history),
            reply_length=len(reply),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return reply

    async def aclose(self) -> None:
        await self._client.close()
