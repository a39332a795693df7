"""Typer command group driving index builds."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import Any, Iterable, NoReturn

import typer
from pydantic import ValidationError

from reindexd.core.config import AppConfig, load_workspace_config
from reindexd.core.logging import (
    Logger,
    bind_log_context,
    configure_logging,
    get_logger,
)
from reindexd.core.paths import WorkspacePaths, resolve_workspace
from reindexd.modules.build import (
    ActivationSwitch,
    ActiveIndexResolver,
    BuildError,
    BuildService,
    EmbedderPool,
    TickResult,
    drive_build,
)
from reindexd.modules.chunks import SqliteChunkSource
from reindexd.modules.db import Database, DatabaseError
from reindexd.modules.embeddings import (
    EmbeddingProviderError,
    create_default_provider_registry,
)
from reindexd.modules.ledger import BuildLedger, LedgerRepository
from reindexd.modules.vectorstore import (
    QdrantVectorStore,
    VectorStoreError,
    build_qdrant_client,
)

_SERVICE_ERRORS = (
    BuildError,
    EmbeddingProviderError,
    VectorStoreError,
    DatabaseError,
    ValueError,
)


@dataclass(slots=True)
class BuildCLIContext:
    """Shared context carried across `reindexd build` commands."""

    paths: WorkspacePaths
    config: AppConfig
    service: BuildService
    activation: ActivationSwitch
    resolver: ActiveIndexResolver
    logger: Logger

    def namespace(self, override: str | None) -> str:
        return override or self.config.build.namespace


_build_app = typer.Typer(
    name="build",
    help=(
        "Start, advance and activate index builds.\n\n"
        "A build re-embeds every chunk of a namespace into a new collection "
        "in resumable batches; `activate` then switches traffic to it."
    ),
    no_args_is_help=True,
    invoke_without_command=False,
)


def _resolve_workspace_override(workspace: Path | None) -> WorkspacePaths:
    env_workspace = os.environ.get("REINDEXD_WORKSPACE")
    env_override = Path(env_workspace).expanduser() if env_workspace else None
    return resolve_workspace(
        workspace_override=workspace,
        env_override=env_override,
    )


def _require_context(ctx: typer.Context) -> BuildCLIContext:
    context = getattr(ctx, "obj", None)
    if not isinstance(context, BuildCLIContext):
        typer.secho(
            "Internal error: build context not initialized.",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return context


def _build_services(
    *,
    paths: WorkspacePaths,
    config: AppConfig,
    logger: Logger,
) -> tuple[BuildService, ActivationSwitch, ActiveIndexResolver]:
    """Wire the database, providers and vector store into the services."""

    database = Database(
        path=paths.database_path(config.db.filename),
        busy_timeout_ms=config.db.busy_timeout_ms,
        logger=logger.bind(component="db"),
    )
    database.ensure_schema()

    ledgers = LedgerRepository(database)
    chunks = SqliteChunkSource(database)
    store = QdrantVectorStore(
        build_qdrant_client(config.vector_store),
        distance=config.vector_store.distance,
        logger=logger,
    )
    providers = create_default_provider_registry()
    embedders = EmbedderPool(
        providers=providers,
        settings=config.embeddings,
        logger=logger,
    )

    service = BuildService(
        database=database,
        ledgers=ledgers,
        chunks=chunks,
        store=store,
        embedders=embedders,
        settings=config.embeddings,
        logger=logger.bind(component="build-service"),
    )
    activation = ActivationSwitch(
        database=database,
        ledgers=ledgers,
        logger=logger.bind(component="activation"),
    )
    resolver = ActiveIndexResolver(
        ledgers=ledgers,
        chunks=chunks,
        store=store,
        embedders=embedders,
        logger=logger.bind(component="lookup"),
    )

    logger.debug(
        "build-services-configured",
        database=str(database.path),
        providers=providers.keys(),
        vector_store=config.vector_store.url,
    )
    return service, activation, resolver


def _handle_service_failure(
    action: str,
    error: Exception,
    *,
    logger: Logger,
) -> NoReturn:
    typer.secho(f"Build {action} failed: {error}", fg=typer.colors.RED)
    logger.error(
        "build-action-failed",
        action=action,
        error=str(error),
        error_type=error.__class__.__name__,
    )
    raise typer.Exit(code=1) from error


def _format_cursor(ledger: BuildLedger) -> str:
    if ledger.cursor is None:
        return "-"
    cursor = ledger.cursor
    return f"{cursor.source_id}#{cursor.chunk_index} ({cursor.chunk_id})"


def _echo_ledger(ledger: BuildLedger) -> None:
    marker = " [active]" if ledger.is_active else ""
    typer.secho(
        f"{ledger.namespace}/{ledger.collection}{marker}",
        fg=typer.colors.CYAN,
        bold=True,
    )
    typer.echo(f"  status: {ledger.status.value}")
    typer.echo(
        f"  progress: {ledger.chunks_done}/{ledger.chunks_total} "
        f"({ledger.progress:.0%})"
    )
    typer.echo(f"  cursor: {_format_cursor(ledger)}")
    typer.echo(
        f"  embedding: {ledger.embedding_provider}:"
        f"{ledger.embedding_model_id} (dim {ledger.embedding_dim})"
    )
    if ledger.built_at is not None:
        typer.echo(f"  built_at: {ledger.to_mapping()['built_at']}")
    if ledger.error_message:
        typer.secho(f"  error: {ledger.error_message}", fg=typer.colors.RED)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def _echo_ledgers(ledgers: Iterable[BuildLedger], *, json_output: bool) -> None:
    records = list(ledgers)
    if json_output:
        _echo_json([ledger.to_mapping() for ledger in records])
        return
    if not records:
        typer.secho("No builds found.", fg=typer.colors.YELLOW)
        return
    for ledger in records:
        _echo_ledger(ledger)


_namespace_option = typer.Option(
    None,
    "--namespace",
    "-n",
    help="Namespace to operate on (defaults to config build.namespace).",
)
_json_option = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON.",
)


@_build_app.callback()
def configure_build_commands(
    ctx: typer.Context,
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help=(
            "Override workspace directory (defaults to "
            "REINDEXD_WORKSPACE or ~/.reindexd)."
        ),
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Override log level for build commands.",
    ),
) -> None:
    """Initialize common build CLI context."""

    try:
        paths = _resolve_workspace_override(workspace)
    except ValueError as exc:
        typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    if not paths.config_file.exists():
        typer.secho(
            (
                "Workspace config not found at "
                f"{paths.config_file}. Run `reindexd init` first."
            ),
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)

    overrides: dict[str, Any] = {"workspace": str(paths.workspace)}
    if log_level:
        overrides["log_level"] = log_level
    try:
        config = load_workspace_config(
            paths.config_file,
            cli_overrides=overrides,
        )
    except (tomllib.TOMLDecodeError, ValidationError) as exc:
        typer.secho(
            f"Failed to load workspace config: {exc}",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1) from exc

    configure_logging(level=config.log_level, workspace_path=config.workspace)
    bind_log_context(
        command=f"build {ctx.invoked_subcommand or ''}".strip(),
        workspace=str(config.workspace),
    )
    logger = get_logger(__name__)

    try:
        service, activation, resolver = _build_services(
            paths=paths,
            config=config,
            logger=logger,
        )
    except DatabaseError as exc:
        _handle_service_failure("setup", exc, logger=logger)

    ctx.obj = BuildCLIContext(
        paths=paths,
        config=config,
        service=service,
        activation=activation,
        resolver=resolver,
        logger=logger,
    )
    ctx.call_on_close(service.embedders.close)


@_build_app.command(
    "start",
    help=(
        "Create or reset a build and provision its collection. The collection "
        "defaults to <namespace>__<model>__<dim>."
    ),
)
def start_build(
    ctx: typer.Context,
    namespace: str | None = _namespace_option,
    collection: str | None = typer.Option(
        None,
        "--collection",
        "-c",
        help="Target collection name.",
    ),
    model: str | None = typer.Option(
        None,
        "--model",
        "-m",
        help="Embedding model id (defaults to config embeddings.model).",
    ),
    provider: str | None = typer.Option(
        None,
        "--provider",
        "-p",
        help="Embedding provider key (defaults to config embeddings.provider).",
    ),
    dim: int | None = typer.Option(
        None,
        "--dim",
        min=1,
        help="Vector dimension; resolved from config or the provider if omitted.",
    ),
) -> None:
    """Start a build and print its initial ledger."""

    context = _require_context(ctx)
    try:
        ledger = context.service.start(
            context.namespace(namespace),
            collection=collection,
            model=model,
            dim=dim,
            provider=provider,
        )
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("start", exc, logger=context.logger)

    typer.secho(f"Started build {ledger.collection}", fg=typer.colors.GREEN)
    _echo_ledger(ledger)


@_build_app.command("tick", help="Process one batch of the build.")
def tick_build(
    ctx: typer.Context,
    collection: str = typer.Argument(..., metavar="COLLECTION"),
    namespace: str | None = _namespace_option,
    batch_size: int | None = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        help="Chunks per tick (defaults to config build.batch_size).",
    ),
) -> None:
    """Run a single tick and report what it processed."""

    context = _require_context(ctx)
    try:
        result = context.service.tick(
            context.namespace(namespace),
            collection,
            batch_size=batch_size or context.config.build.batch_size,
        )
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("tick", exc, logger=context.logger)

    typer.echo(
        f"processed={result.processed} "
        f"finished={str(result.finished).lower()}"
    )
    _echo_ledger(result.ledger)


@_build_app.command(
    "run",
    help=(
        "Tick the build until it is ready (or --max-ticks is reached), "
        "optionally activating it afterwards."
    ),
)
def run_build(
    ctx: typer.Context,
    collection: str = typer.Argument(..., metavar="COLLECTION"),
    namespace: str | None = _namespace_option,
    batch_size: int | None = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        help="Chunks per tick (defaults to config build.batch_size).",
    ),
    max_ticks: int | None = typer.Option(
        None,
        "--max-ticks",
        min=1,
        help="Stop after this many ticks even if the build is not ready.",
    ),
    activate: bool = typer.Option(
        False,
        "--activate",
        help="Activate the build once it reaches ready.",
    ),
) -> None:
    """Drive a build to completion from the command line."""

    context = _require_context(ctx)
    resolved_namespace = context.namespace(namespace)

    def _report(result: TickResult) -> None:
        ledger = result.ledger
        typer.echo(
            f"tick processed={result.processed} "
            f"done={ledger.chunks_done}/{ledger.chunks_total} "
            f"status={ledger.status.value}"
        )

    try:
        outcome = drive_build(
            context.service,
            resolved_namespace,
            collection,
            batch_size=batch_size or context.config.build.batch_size,
            max_ticks=max_ticks,
            on_tick=_report,
        )
        if activate and outcome.completed:
            ledger = context.activation.activate(resolved_namespace, collection)
        else:
            ledger = outcome.ledger
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("run", exc, logger=context.logger)

    colour = typer.colors.GREEN if outcome.completed else typer.colors.YELLOW
    typer.secho(
        f"{outcome.ticks} ticks, {outcome.processed} chunks processed",
        fg=colour,
    )
    _echo_ledger(ledger)
    context.logger.info(
        "build-run",
        namespace=resolved_namespace,
        collection=collection,
        ticks=outcome.ticks,
        processed=outcome.processed,
        completed=outcome.completed,
        activated=ledger.is_active,
    )


@_build_app.command("resume", help="Return a failed build to building.")
def resume_build(
    ctx: typer.Context,
    collection: str = typer.Argument(..., metavar="COLLECTION"),
    namespace: str | None = _namespace_option,
) -> None:
    context = _require_context(ctx)
    try:
        ledger = context.service.resume(context.namespace(namespace), collection)
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("resume", exc, logger=context.logger)

    typer.secho(f"Resumed build {collection}", fg=typer.colors.GREEN)
    _echo_ledger(ledger)


@_build_app.command(
    "activate",
    help="Atomically make a ready build the namespace's active index.",
)
def activate_build(
    ctx: typer.Context,
    collection: str = typer.Argument(..., metavar="COLLECTION"),
    namespace: str | None = _namespace_option,
) -> None:
    context = _require_context(ctx)
    try:
        ledger = context.activation.activate(
            context.namespace(namespace),
            collection,
        )
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("activate", exc, logger=context.logger)

    typer.secho(f"Activated {collection}", fg=typer.colors.GREEN)
    _echo_ledger(ledger)


@_build_app.command(
    "deactivate",
    help="Clear the namespace's active index.",
)
def deactivate_build(
    ctx: typer.Context,
    namespace: str | None = _namespace_option,
) -> None:
    context = _require_context(ctx)
    resolved = context.namespace(namespace)
    try:
        ledger = context.activation.deactivate(resolved)
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("deactivate", exc, logger=context.logger)

    if ledger is None:
        typer.secho(
            f"Namespace {resolved} had no active index.",
            fg=typer.colors.YELLOW,
        )
        return
    typer.secho(f"Deactivated {ledger.collection}", fg=typer.colors.GREEN)


@_build_app.command("status", help="Show the ledger of one build.")
def status_build(
    ctx: typer.Context,
    collection: str = typer.Argument(..., metavar="COLLECTION"),
    namespace: str | None = _namespace_option,
    json_output: bool = _json_option,
) -> None:
    context = _require_context(ctx)
    try:
        ledger = context.service.status(context.namespace(namespace), collection)
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("status", exc, logger=context.logger)

    if json_output:
        _echo_json(ledger.to_mapping())
        return
    _echo_ledger(ledger)


@_build_app.command("list", help="List builds, optionally for one namespace.")
def list_builds(
    ctx: typer.Context,
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Only list builds of this namespace (defaults to all).",
    ),
    json_output: bool = _json_option,
) -> None:
    context = _require_context(ctx)
    try:
        ledgers = context.service.list_builds(namespace)
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("list", exc, logger=context.logger)

    _echo_ledgers(ledgers, json_output=json_output)


@_build_app.command("active", help="Show the namespace's active build.")
def active_build(
    ctx: typer.Context,
    namespace: str | None = _namespace_option,
    json_output: bool = _json_option,
) -> None:
    context = _require_context(ctx)
    try:
        ledger = context.activation.active(context.namespace(namespace))
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("active", exc, logger=context.logger)

    if json_output:
        _echo_json(ledger.to_mapping())
        return
    _echo_ledger(ledger)


@_build_app.command(
    "index-source",
    help=(
        "Embed and upsert all chunks of one source into a collection "
        "(defaults to the active one) without touching build progress."
    ),
)
def index_source(
    ctx: typer.Context,
    source_id: str = typer.Argument(..., metavar="SOURCE_ID"),
    namespace: str | None = _namespace_option,
    collection: str | None = typer.Option(
        None,
        "--collection",
        "-c",
        help="Target collection (defaults to the active collection).",
    ),
) -> None:
    context = _require_context(ctx)
    try:
        count = context.service.index_source(
            context.namespace(namespace),
            source_id,
            collection=collection,
        )
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("index-source", exc, logger=context.logger)

    typer.secho(
        f"Indexed {count} chunks of {source_id}",
        fg=typer.colors.GREEN if count else typer.colors.YELLOW,
    )


@_build_app.command(
    "search",
    help="Search the namespace's active index and print matching chunks.",
)
def search_active(
    ctx: typer.Context,
    query: str = typer.Argument(..., metavar="QUERY"),
    namespace: str | None = _namespace_option,
    limit: int = typer.Option(5, "--limit", "-k", min=1),
    source_id: str | None = typer.Option(
        None,
        "--source-id",
        help="Only return chunks of this source.",
    ),
    json_output: bool = _json_option,
) -> None:
    context = _require_context(ctx)
    try:
        results = context.resolver.search(
            context.namespace(namespace),
            query,
            limit=limit,
            source_id=source_id,
        )
    except _SERVICE_ERRORS as exc:
        _handle_service_failure("search", exc, logger=context.logger)

    if json_output:
        _echo_json([result.to_mapping() for result in results])
        return
    if not results:
        typer.secho("No matches.", fg=typer.colors.YELLOW)
        return
    for result in results:
        typer.secho(
            f"{result.score:.4f} {result.source_id}#{result.chunk_index}",
            fg=typer.colors.CYAN,
        )
        typer.echo(f"  {result.text[:200]}")


def create_build_app() -> typer.Typer:
    """Return the Typer sub-application for build commands."""

    return _build_app


__all__ = [
    "BuildCLIContext",
    "create_build_app",
]
