"""Exception types shared across the retrieval engine."""

from __future__ import annotations


class DevRagError(Exception):
    """Base exception for devrag."""


class NotFoundError(DevRagError, LookupError):
    """A chunk id, chunk key or file path has no recorded entry."""


class InvalidInputError(DevRagError, ValueError):
    """A request or record is missing required fields or is out of range."""


class UpstreamError(DevRagError):
    """An embedding, similarity-store or hierarchy lookup call failed."""


class SearchCancelledError(DevRagError):
    """The caller cancelled the request or its deadline expired."""
