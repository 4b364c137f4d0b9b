"""Inference capability used by the tool-dispatch loop.

The loop talks to a ``ChatModel``: give it the standing system prompt, the
conversation so far and the declared tools, and it streams back

* ``("token",   str)``          — a text chunk of the model's own answer
* ``("message", ChatMessage)``  — the complete assistant message (last event)

``ClaudeChatModel`` implements this on the Anthropic Messages API.  It is
also where the provider-neutral ``ChatMessage`` history is translated to
Anthropic content blocks (``tool_use`` / ``tool_result``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Protocol

import anthropic

from core.models import ChatMessage, ToolCall

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

ModelEvent = tuple[str, Any]


class ChatModel(Protocol):
    """Interface for the external language model."""

    def stream(
        self,
        system: str,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
    ) -> Iterator[ModelEvent]:
        """Yield ``("token", str)`` events, then one ``("message", ChatMessage)``."""
        ...


def to_anthropic_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Convert a ChatMessage history into Anthropic ``messages`` format.

    Consecutive tool messages are merged into a single user message of
    ``tool_result`` blocks, as the API requires.  System messages are
    returned separately so the caller can append them to ``system``.

    Returns:
        ``(extra_system_text, api_messages)``
    """
    system_parts: list[str] = []
    api_messages: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.text)

        elif msg.role == "user":
            api_messages.append({"role": "user", "content": msg.content})

        elif msg.role == "assistant":
            blocks: list[dict[str, Any]] = []
            if msg.text:
                blocks.append({"type": "text", "text": msg.text})
            for call in msg.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            # An empty final answer has nothing to replay
            if blocks:
                api_messages.append({"role": "assistant", "content": blocks})

        elif msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.text,
                "is_error": msg.is_error,
            }
            prev = api_messages[-1] if api_messages else None
            if (
                prev is not None
                and prev["role"] == "user"
                and isinstance(prev["content"], list)
                and all(b.get("type") == "tool_result" for b in prev["content"])
            ):
                prev["content"].append(block)
            else:
                api_messages.append({"role": "user", "content": [block]})

    return "\n\n".join(p for p in system_parts if p), api_messages


def from_anthropic_message(message: Any) -> ChatMessage:
    """Build an assistant ``ChatMessage`` from an Anthropic ``Message``."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in getattr(message, "content", []) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(block.text)
        elif block_type == "tool_use":
            tool_calls.append(ToolCall(
                id=block.id,
                name=block.name,
                arguments=dict(block.input or {}),
            ))
    return ChatMessage(role="assistant", content="".join(text_parts), tool_calls=tool_calls)


class ClaudeChatModel:
    """Claude-backed ``ChatModel`` with tool use and token streaming.

    The Anthropic client is lazy-initialised to allow instantiation without
    a live API key (useful in tests when the client is mocked).
    """

    def __init__(self, settings: Settings, max_tokens: int = 1500) -> None:
        self.settings = settings
        self.max_tokens = max_tokens
        self._client: object = None  # Lazy-initialised anthropic.Anthropic instance

    @property
    def client(self) -> object:
        """Lazy-initialise and return the Anthropic SDK client."""
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key,
                max_retries=5,
                timeout=self.settings.http_timeout,
            )
        return self._client

    def stream(
        self,
        system: str,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
    ) -> Iterator[ModelEvent]:
        extra_system, api_messages = to_anthropic_messages(messages)
        if extra_system:
            system = f"{system}\n\n{extra_system}"

        kwargs: dict[str, Any] = {
            "model": self.settings.agent_model,
            "max_tokens": self.max_tokens,
            "temperature": 0,
            "system": system,
            "messages": api_messages,
        }
        if tools:
            kwargs["tools"] = tools

        with self.client.messages.stream(**kwargs) as stream:
            for event in stream:
                if getattr(event, "type", None) != "content_block_delta":
                    continue
                delta = getattr(event, "delta", None)
                if delta and getattr(delta, "type", None) == "text_delta" and delta.text:
                    yield ("token", delta.text)

            final = stream.get_final_message()

        message = from_anthropic_message(final)
        logger.debug(
            "Model replied: %d chars, %d tool call(s), stop_reason=%s",
            len(message.text), len(message.tool_calls), getattr(final, "stop_reason", None),
        )
        yield ("message", message)
