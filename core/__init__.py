"""
news-agent core package.

Modules
───────
models   — Pydantic data models (SourceRef, NewsRow, ChatMessage, ToolCall)
cache    — In-memory TTL/capacity-bounded store of unsaved search results
news     — SQLite-backed topic_news table (insert_many, list_by_topic, get_by_id)
search   — Web search backends: Claude web_search and Perplexity
tools    — Tool registry: argument schemas, handlers and result text
llm      — Claude chat model with tool use; message format conversion
threads  — Conversation persistence keyed by thread id (sqlite, memory)
agent    — Tool-dispatch loop driving model ⇄ tools until a final answer
"""
