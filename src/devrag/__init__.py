"""devrag - provenance-aware hierarchical retrieval for source-code chunks."""

__version__ = "0.1.0"
