"""Pure text transforms applied to upstream results before they reach a client."""

from __future__ import annotations

import re
from typing import Any

THINK_SPAN_RE = re.compile(r"<think>[\s\S]*?</think>")
NO_RESULTS = "No search results found."


def strip_thinking_tokens(content: str) -> str:
    """Drop every ``<think>...</think>`` span and trim the remainder.

    Text carrying only an orphan opening or closing tag is returned unchanged.
    """
    stripped, count = THINK_SPAN_RE.subn("", content)
    if count == 0 and ("<think>" in content or "</think>" in content):
        return content
    return stripped.strip()


def append_citations(content: str, citations: list[str]) -> str:
    if not citations:
        return content
    lines = [content, "", "Citations:"]
    lines.extend(f"[{i}] {url}" for i, url in enumerate(citations, start=1))
    return "\n".join(lines) + "\n"


def _display(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def format_search_results(data: Any) -> str:
    """Render a search response as a numbered markdown-ish list."""
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        return NO_RESULTS

    parts = [f"Found {len(results)} search results:\n\n"]
    for index, result in enumerate(results, start=1):
        if not isinstance(result, dict):
            result = {}
        parts.append(f"{index}. **{_display(result.get('title', ''))}**\n")
        parts.append(f"   URL: {_display(result.get('url', ''))}\n")
        if result.get("snippet"):
            parts.append(f"   {_display(result['snippet'])}\n")
        if result.get("date"):
            parts.append(f"   Date: {_display(result['date'])}\n")
        parts.append("\n")
    return "".join(parts)
