"""
SWUNG Assistant: LLM chat client with tool calling.

Single public coroutine ``ChatClient.complete()`` that streams one
chat-completion turn from an OpenAI-compatible endpoint (GitHub Copilot or
OpenAI) and returns the reassembled reply.

Streamed tool calls arrive as fragments keyed by index; the
``ToolCallAccumulator`` state machine joins them and is flushed once the
stream ends. It knows nothing about the transport: the client translates
SDK chunks into ``add_content`` / ``add_tool_delta`` calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import openai
from openai import AsyncOpenAI

from swung.core.credentials import Credential
from swung.core.errors import LLMError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reply types
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""     # raw JSON text, possibly malformed


@dataclass
class ChatReply:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None


# ---------------------------------------------------------------------------
# Stream accumulator
# ---------------------------------------------------------------------------


class AccumulatorState(Enum):
    OPEN = "open"
    FINISHED = "finished"


class ToolCallAccumulator:
    """Reassembles streamed content and tool-call fragments.

    OPEN accepts fragments; ``finish()`` moves to FINISHED and returns the
    reply with tool calls ordered by index. Feeding a FINISHED accumulator
    raises RuntimeError.
    """

    def __init__(self) -> None:
        self.state = AccumulatorState.OPEN
        self._content: list[str] = []
        self._calls: dict[int, ToolCall] = {}
        self._finish_reason: str | None = None

    def _require_open(self) -> None:
        if self.state is not AccumulatorState.OPEN:
            raise RuntimeError("accumulator already finished")

    def add_content(self, text: str | None) -> None:
        self._require_open()
        if text:
            self._content.append(text)

    def add_tool_delta(
        self,
        index: int,
        id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        self._require_open()
        call = self._calls.setdefault(index, ToolCall(index=index))
        if id:
            call.id = id
        if name:
            call.name += name
        if arguments:
            call.arguments += arguments

    def set_finish_reason(self, reason: str | None) -> None:
        self._require_open()
        if reason:
            self._finish_reason = reason

    def feed_chunk(self, chunk: Any) -> None:
        """Apply one ``ChatCompletionChunk`` from the openai SDK."""
        for choice in getattr(chunk, "choices", None) or []:
            delta = choice.delta
            if delta is not None:
                self.add_content(delta.content)
                for tc in delta.tool_calls or []:
                    fn = tc.function
                    self.add_tool_delta(
                        tc.index,
                        id=tc.id,
                        name=fn.name if fn else None,
                        arguments=fn.arguments if fn else None,
                    )
            self.set_finish_reason(choice.finish_reason)

    def finish(self) -> ChatReply:
        self._require_open()
        self.state = AccumulatorState.FINISHED
        calls = [self._calls[i] for i in sorted(self._calls)]
        return ChatReply(
            content="".join(self._content).strip(),
            tool_calls=[c for c in calls if c.name],
            finish_reason=self._finish_reason,
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

ClientFactory = Callable[[Credential, float], Any]


def _default_client_factory(credential: Credential, timeout: float) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=credential.api_key,
        base_url=credential.base_url or None,
        default_headers=credential.headers or None,
        timeout=timeout,
        max_retries=0,
    )


class ChatClient:
    """One streamed chat-completion turn per ``complete()`` call."""

    def __init__(
        self,
        model: str | None = None,
        temperature: float | None = None,
        timeout: float | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        if model is None or temperature is None or timeout is None:
            from swung.config import settings
            model = model or settings.LLM_MODEL
            temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
            timeout = settings.LLM_TIMEOUT_SECONDS if timeout is None else timeout
        self.model = model
        self.temperature = temperature
        self.timeout = float(timeout)
        self._client_factory = client_factory or _default_client_factory

    async def complete(
        self,
        credential: Credential,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ChatReply:
        """Send ``messages`` (+ ``tools``) and return the reassembled reply.

        Raises LLMError on network failure, non-success status, a
        malformed stream or timeout.
        """
        client = self._client_factory(credential, self.timeout)
        try:
            return await asyncio.wait_for(self._stream(client, messages, tools), self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("LLM call timed out after %.0fs", self.timeout)
            raise LLMError(f"timed out after {self.timeout:.0f}s") from exc
        except openai.APIStatusError as exc:
            logger.error("LLM returned status %s: %s", exc.status_code, exc.message)
            raise LLMError(f"status {exc.status_code}") from exc
        except openai.OpenAIError as exc:
            logger.error("LLM call failed: %s", exc)
            raise LLMError(str(exc)) from exc
        finally:
            close = getattr(client, "close", None)
            if close is not None:
                try:
                    await close()
                except Exception as exc:
                    logger.debug("Error closing LLM client: %s", exc)

    async def _stream(
        self,
        client: Any,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
    ) -> ChatReply:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
            kwargs["parallel_tool_calls"] = False

        stream = await client.chat.completions.create(**kwargs)
        acc = ToolCallAccumulator()
        try:
            async for chunk in stream:
                acc.feed_chunk(chunk)
        except (AttributeError, TypeError) as exc:
            raise LLMError(f"malformed stream chunk: {exc}") from exc
        reply = acc.finish()
        logger.info(
            "LLM reply: %d chars, %d tool call(s), finish=%s",
            len(reply.content), len(reply.tool_calls), reply.finish_reason,
        )
        return reply
