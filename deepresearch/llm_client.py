"""OpenRouter-backed reasoning engine built on the OpenAI-compatible SDK."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, AsyncIterator

from deepresearch.config import settings
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import render_prompt


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class MessageResponse:
    text: str
    usage: Usage


def _usage_from(raw: Any) -> Usage:
    return Usage(
        input_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        output_tokens=getattr(raw, "completion_tokens", 0) or 0,
    )


class OpenRouterStream:
    def __init__(self, stream_coro: Any):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self.usage = Usage()

    async def __aenter__(self) -> "OpenRouterStream":
        self._stream = await self._stream_coro
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        async for chunk in self._stream:
            usage = getattr(chunk, "usage", None)
            if usage:
                self.usage = _usage_from(usage)
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            text = getattr(delta, "content", None) if delta else None
            if text:
                yield text

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()


class OpenRouterMessagesAdapter:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str) -> int:
        # Some OpenAI GPT-5-compatible gateways reject temperature=0.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return 0

    @staticmethod
    def _to_openai_messages(system: str, prompt: str) -> list[dict[str, Any]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]

    async def create(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        prompt: str,
        response_schema: dict[str, Any] | None = None,
    ) -> MessageResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_openai_messages(system, prompt),
            "max_tokens": max_tokens,
            "temperature": self._temperature_for_model(model),
        }
        if response_schema:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "strict": True, "schema": response_schema},
            }
        response = await self._client.chat.completions.create(**kwargs)
        choice = response.choices[0].message
        return MessageResponse(
            text=getattr(choice, "content", None) or "",
            usage=_usage_from(getattr(response, "usage", None)),
        )

    def stream(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        prompt: str,
    ) -> OpenRouterStream:
        stream = self._client.chat.completions.create(
            model=model,
            messages=self._to_openai_messages(system, prompt),
            max_tokens=max_tokens,
            temperature=self._temperature_for_model(model),
            stream=True,
            stream_options={"include_usage": True},
        )
        return OpenRouterStream(stream)


class OpenRouterClientAdapter:
    def __init__(self, openai_client: Any):
        self.messages = OpenRouterMessagesAdapter(openai_client)


def get_client() -> OpenRouterClientAdapter:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterClientAdapter(openai_client)


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


def system_prompt() -> str:
    return render_prompt("engine.system_prompt", today=date.today().isoformat())


class OpenRouterReasoningEngine:
    """Single-shot completions and streamed completions with call logging.

    `complete` returns the parsed JSON object when a response schema is given
    and the model replied with valid JSON, otherwise the raw text. Deciding
    whether a reply is usable is left to the caller.
    """

    def __init__(
        self,
        client: OpenRouterClientAdapter | None = None,
        *,
        model: str | None = None,
        planner_model: str | None = None,
        max_tokens: int | None = None,
    ):
        self._client = client
        self.model = model or get_model()
        self.planner_model = planner_model or settings.planner_model.strip() or self.model
        self.max_tokens = max_tokens or settings.llm_max_tokens

    @property
    def client(self) -> OpenRouterClientAdapter:
        if self._client is None:
            self._client = get_client()
        return self._client

    def _model_for(self, caller: str) -> str:
        return self.planner_model if caller.startswith("planner") else self.model

    async def complete(
        self,
        prompt: str,
        response_schema: dict[str, Any] | None = None,
        *,
        caller: str = "engine",
    ) -> str | dict[str, Any]:
        model = self._model_for(caller)
        t0 = time.monotonic()
        try:
            response = await self.client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                system=system_prompt(),
                prompt=prompt,
                response_schema=response_schema,
            )
        except Exception as exc:
            log_service.log_llm_call(
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise
        log_service.log_llm_call(
            model=model,
            caller=caller,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        if response_schema is None:
            return response.text
        try:
            parsed = json.loads(response.text)
        except json.JSONDecodeError:
            return response.text
        return parsed if isinstance(parsed, dict) else response.text

    async def stream(self, prompt: str, *, caller: str = "synthesis") -> AsyncIterator[str]:
        model = self._model_for(caller)
        t0 = time.monotonic()
        async with self.client.messages.stream(
            model=model,
            max_tokens=self.max_tokens,
            system=system_prompt(),
            prompt=prompt,
        ) as stream:
            async for text in stream.text_stream:
                yield text
        log_service.log_llm_call(
            model=model,
            caller=caller,
            input_tokens=stream.usage.input_tokens,
            output_tokens=stream.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
