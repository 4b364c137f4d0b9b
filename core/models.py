"""
Pydantic models shared across the agent core.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceRef(BaseModel):
    """A single web source returned by the search capability."""

    title: Optional[str] = None
    url: Optional[str] = None
    date: Optional[str] = None
    snippet: Optional[str] = None


class CachedSearchResult(BaseModel):
    """A fetched-but-unsaved search result held in the ResultCache."""

    model_config = ConfigDict(frozen=True)

    handle: str
    query: str
    answer_text: str
    sources: tuple[SourceRef, ...] = ()
    created_at: float


class NewsInsert(BaseModel):
    """Column values for a new ``topic_news`` row."""

    topic: str
    source: str
    title: str
    url: str
    summary: str


class NewsRow(NewsInsert):
    """A persisted ``topic_news`` row."""

    id: int
    created_at: str


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """One turn in a conversation.

    ``tool_calls`` is only set on assistant messages; ``tool_call_id``,
    ``name`` and ``is_error`` only on tool messages.
    """

    role: Literal["user", "assistant", "system", "tool"]
    content: str | list[dict[str, Any]] = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    is_error: bool = False

    @property
    def text(self) -> str:
        """Plain text of ``content``, joining any text blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            block.get("text", "")
            for block in self.content
            if isinstance(block.get("text"), str)
        )
