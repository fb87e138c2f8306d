"""Render retrieval results into text for a language model."""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from devrag.models import Chunk

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n\n... (truncated)"
RESULT_SEPARATOR = "\n---\n\n"


class ContextFormat(str, Enum):
    HIERARCHY = "hierarchy"
    SIMPLE = "simple"
    METADATA = "metadata"
    COMPACT = "compact"


def _parent_of(result: Any) -> Chunk | None:
    return getattr(result, "parent", None)


def _children_of(result: Any) -> list[Chunk]:
    return getattr(result, "children", None) or []


def _relevance(result: Any) -> float:
    return getattr(result, "relevance_score", result.score)


class ContextBuilder:
    """Formats search results under a token budget.

    Token counts are estimated at four characters per token. This is a rough,
    deterministic heuristic and overestimates how much CJK text fits.
    """

    def __init__(self, max_tokens: int) -> None:
        self.max_tokens = max_tokens

    def build(self, results: Sequence[Any], fmt: ContextFormat = ContextFormat.HIERARCHY) -> str:
        fmt = ContextFormat(fmt)
        if fmt is ContextFormat.SIMPLE:
            return self.build_simple_context(results)
        if fmt is ContextFormat.METADATA:
            return self.build_context_with_metadata(results)
        if fmt is ContextFormat.COMPACT:
            return self.build_compact_context(results)
        return self.build_context_with_hierarchy(results)

    def build_context_with_hierarchy(self, results: Sequence[Any]) -> str:
        """Parent chunk, then the hit, then its children, for every result."""
        parts: list[str] = []
        for i, result in enumerate(results, 1):
            if i > 1:
                parts.append(RESULT_SEPARATOR)

            parent = _parent_of(result)
            if parent is not None:
                parts.append(f"## Parent Context (File: {result.file_path})\n\n")
                parts.append(parent.content + "\n\n")

            parts.append(
                f"## Search Result {i} (File: {result.file_path}, "
                f"Lines: {result.start_line}-{result.end_line})\n\n"
            )
            parts.append(result.content + "\n\n")

            children = _children_of(result)
            if children:
                parts.append("### Sub-sections:\n\n")
                for j, child in enumerate(children, 1):
                    parts.append(f"#### Sub-section {j}:\n")
                    parts.append(child.content + "\n\n")

        return "".join(parts)

    def build_simple_context(self, results: Sequence[Any]) -> str:
        parts: list[str] = []
        for i, result in enumerate(results, 1):
            if i > 1:
                parts.append(RESULT_SEPARATOR)
            parts.append(
                f"## Search Result {i} (File: {result.file_path}, "
                f"Lines: {result.start_line}-{result.end_line})\n\n"
            )
            parts.append(result.content + "\n\n")
        return "".join(parts)

    def build_context_with_metadata(self, results: Sequence[Any]) -> str:
        """Markdown with file, line range and relevance score for each hit."""
        parts: list[str] = ["# Search Results\n\n"]
        for i, result in enumerate(results, 1):
            if i > 1:
                parts.append(RESULT_SEPARATOR)

            parts.append(f"## Result {i}\n\n")
            parts.append(f"- **File**: {result.file_path}\n")
            parts.append(f"- **Lines**: {result.start_line}-{result.end_line}\n")
            parts.append(f"- **Relevance Score**: {_relevance(result):.4f}\n\n")

            parent = _parent_of(result)
            if parent is not None:
                parts.append("### Parent Context\n\n")
                parts.append(f"```\n{parent.content}\n```\n\n")

            parts.append("### Main Content\n\n")
            parts.append(f"```\n{result.content}\n```\n\n")

            children = _children_of(result)
            if children:
                parts.append("### Sub-sections\n\n")
                for j, child in enumerate(children, 1):
                    parts.append(f"#### Sub-section {j}\n\n")
                    parts.append(f"```\n{child.content}\n```\n\n")

        return "".join(parts)

    def build_compact_context(self, results: Sequence[Any]) -> str:
        parts: list[str] = []
        for i, result in enumerate(results, 1):
            if i > 1:
                parts.append("\n---\n")
            parts.append(f"[{i}] {result.file_path} (L{result.start_line}-L{result.end_line})\n")
            parts.append(result.content + "\n")
        return "".join(parts)

    def estimate_token_count(self, text: str) -> int:
        return len(text) // CHARS_PER_TOKEN

    def truncate_to_token_limit(self, text: str) -> str:
        max_chars = self.max_tokens * CHARS_PER_TOKEN
        if len(text) <= max_chars:
            return text
        return text[:max_chars] + TRUNCATION_MARKER
