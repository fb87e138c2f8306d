"""Command line interface for devrag."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from devrag.cancellation import RequestContext
from devrag.config import AppConfig
from devrag.embedding.encoder import EmbeddingConfig, EmbeddingModel
from devrag.errors import DevRagError
from devrag.index.storage import SQLiteChunkStore
from devrag.provenance import ProvenanceGraph, Ranker
from devrag.search import (
    ContextBuilder,
    ContextFormat,
    HierarchicalSearchOptions,
    RetrievalOptions,
    RetrievalService,
    Searcher,
    SearchParams,
)


logger = logging.getLogger(__name__)
console = Console()
app = typer.Typer(help="devrag - provenance-aware code retrieval")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _existing_db(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return resolved_db


def _load_graph(store: SQLiteChunkStore) -> ProvenanceGraph:
    graph = ProvenanceGraph()
    loaded = graph.load(store.iter_provenance())
    logger.debug(f"Provenance graph holds {loaded} chunk versions")
    return graph


def _fail(exc: DevRagError) -> NoReturn:
    console.print(f"[red]{exc}[/red]")
    raise typer.Exit(code=1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    product: Optional[UUID] = typer.Option(None, "--product", help="Product ID to search"),
    source: Optional[UUID] = typer.Option(None, "--source", help="Source ID to search"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    limit: int = typer.Option(AppConfig().search_limit, help="Number of results (max 50)"),
    path_prefix: str = typer.Option("", help="Only match files under this path"),
    content_type: str = typer.Option("", help="Only match files of this content type"),
    before: int = typer.Option(AppConfig().context_before, help="Sibling chunks before each hit"),
    after: int = typer.Option(AppConfig().context_after, help="Sibling chunks after each hit"),
    parent: bool = typer.Option(False, "--parent", help="Attach parent chunks"),
    children: bool = typer.Option(False, "--children", help="Attach child chunks"),
    ancestors: bool = typer.Option(False, "--ancestors", help="Attach the ancestor chain"),
    max_depth: int = typer.Option(AppConfig().max_depth, help="Ancestor depth, 0 = unlimited"),
    latest_only: bool = typer.Option(False, "--latest-only", help="Drop stale chunk versions"),
    no_rank: bool = typer.Option(False, "--no-rank", help="Keep raw similarity order"),
    fmt: ContextFormat = typer.Option(ContextFormat.HIERARCHY, "--format", help="Context layout"),
    max_tokens: int = typer.Option(AppConfig().max_tokens, help="Token budget for the context"),
    show_context: bool = typer.Option(False, "--context", help="Print the assembled context"),
    timeout: Optional[float] = typer.Option(None, help="Give up after this many seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search a product or source and rank hits by version freshness."""
    _setup_logging(verbose)
    if product is None and source is None:
        raise typer.BadParameter("Pass --product or --source")

    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        model_name=model,
        max_tokens=max_tokens,
    )
    resolved_db = _existing_db(config.db_path)

    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
    store = SQLiteChunkStore(resolved_db, dimension=embedder.dimension)
    try:
        service = RetrievalService(
            Searcher(embedder, store),
            ContextBuilder(config.max_tokens),
            Ranker(_load_graph(store), config.ranking_config()),
        )
        params = SearchParams(
            query=query,
            product_id=product,
            source_id=source if product is None else None,
            limit=limit,
            path_prefix=path_prefix,
            content_type=content_type,
            context_before=before,
            context_after=after,
        )
        options = RetrievalOptions(
            latest_only=latest_only,
            rank=not no_rank,
            hierarchy=HierarchicalSearchOptions(
                include_parent=parent,
                include_children=children,
                include_ancestors=ancestors,
                max_depth=max_depth,
            ),
            context_format=fmt,
        )
        ctx = RequestContext.with_timeout(timeout) if timeout else None
        payload = service.retrieve(params, options, ctx)
    except DevRagError as exc:
        _fail(exc)
    finally:
        store.close()

    if not payload.results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("File")
    table.add_column("Lines")
    table.add_column("Latest")
    table.add_column("Snippet")

    for result in payload.results:
        snippet = result.content.replace("\n", " ")
        latest = getattr(result, "is_latest", None)
        table.add_row(
            f"{result.relevance_score:.4f}",
            result.file_path,
            f"{result.start_line}-{result.end_line}",
            "-" if latest is None else ("yes" if latest else "no"),
            snippet[:180],
        )

    console.print(table)
    console.print(
        f"{len(payload.results)} results in {payload.duration:.3f}s, "
        f"~{payload.token_count} context tokens" + (" (truncated)" if payload.truncated else "")
    )
    if show_context:
        console.print(payload.context, markup=False, highlight=False)


@app.command()
def trace(
    chunk_id: UUID = typer.Argument(..., help="Chunk ID to trace"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show where a chunk came from."""
    store = SQLiteChunkStore(_existing_db(db))
    try:
        graph = _load_graph(store)
    finally:
        store.close()

    try:
        report = graph.trace_provenance(chunk_id)
    except DevRagError as exc:
        _fail(exc)
    console.print(report, markup=False, highlight=False)


@app.command()
def history(
    file_path: str = typer.Argument(..., help="Indexed file path"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List every indexed chunk version of a file."""
    store = SQLiteChunkStore(_existing_db(db))
    try:
        graph = _load_graph(store)
    finally:
        store.close()

    try:
        file_history = graph.get_file_history(file_path)
    except DevRagError as exc:
        _fail(exc)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Chunk")
    table.add_column("Commit")
    table.add_column("Chunk Key")
    table.add_column("Latest")
    table.add_column("Indexed At")

    for version in sorted(file_history.versions, key=lambda v: v.indexed_at):
        table.add_row(
            str(version.chunk_id),
            version.commit_hash[:12],
            version.chunk_key,
            "yes" if version.is_latest else "no",
            version.indexed_at.isoformat(),
        )
    console.print(table)
