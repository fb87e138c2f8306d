"""Chunk key helpers.

A chunk key binds a chunk to its product, source, path, line range and commit::

    {product}/{source}/{path}#L{start}-L{end}@{commit}

Stripping the ``@{commit}`` suffix yields the base key shared by every version of
the same logical region.
"""

from __future__ import annotations


def build_chunk_key(
    product: str,
    source: str,
    path: str,
    start_line: int,
    end_line: int,
    commit_hash: str,
) -> str:
    return f"{product}/{source}/{path}#L{start_line}-L{end_line}@{commit_hash}"


def extract_base_chunk_key(chunk_key: str) -> str:
    """Return ``chunk_key`` without its trailing ``@{commit}`` suffix."""
    index = chunk_key.rfind("@")
    if index < 0:
        return chunk_key
    return chunk_key[:index]
