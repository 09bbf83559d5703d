"""Typer command line for the recall benchmark (``annbench``)."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import LogFormat, LogLevel, Settings, StoreBackend, load_settings
from .cql import CqlVectorStore, connect_session, provision_schema
from .devtools import InMemoryVectorStore, make_synthetic_dataset
from .errors import DispatchFailure, RecallBelowThreshold, VectorRecallError
from .interfaces import VectorStore
from .logging import setup_logging
from .orchestrator import BenchmarkOrchestrator, BenchmarkReport

__all__ = ["app"]

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(
    no_args_is_help=True,
    help="Measure Recall@K and throughput of a vector store under bounded concurrency.",
    rich_markup_mode="rich",
)

EXIT_ERROR = 1
EXIT_BELOW_THRESHOLD = 2


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Annotated[
        Optional[LogLevel], typer.Option("--log-level", help="Logging level")
    ] = None,
    log_format: Annotated[
        Optional[LogFormat], typer.Option("--log-format", help="console or json")
    ] = None,
    log_dir: Annotated[
        Optional[Path], typer.Option("--log-dir", help="Also write rotating JSONL logs here")
    ] = None,
) -> None:
    """Global logging options shared by every command."""

    ctx.obj = {"app.log_level": log_level, "app.log_format": log_format, "app.log_dir": log_dir}


def _settings(ctx: typer.Context, overrides: Dict[str, Any]) -> Settings:
    merged = dict(ctx.obj or {})
    merged.update(overrides)
    try:
        settings = load_settings(merged)
    except VectorRecallError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(EXIT_ERROR) from exc
    setup_logging(
        level=settings.app.log_level.value,
        fmt=settings.app.log_format.value,
        log_dir=settings.app.log_dir,
    )
    return settings


def _build_store(settings: Settings) -> VectorStore:
    if settings.store is StoreBackend.CQL:
        return CqlVectorStore.connect(settings.cql, dimension=settings.dataset.dimension)
    return InMemoryVectorStore(workers=min(settings.dispatch.max_in_flight, 32))


def _render(report: BenchmarkReport) -> None:
    table = Table(title=f"Recall@{report.query.k}")
    table.add_column("phase")
    table.add_column("dispatched", justify="right")
    table.add_column("succeeded", justify="right")
    table.add_column("failed", justify="right")
    table.add_column("peak in flight", justify="right")
    table.add_column("ops/s", justify="right")
    for phase in (report.ingest, report.query.phase):
        table.add_row(
            phase.phase,
            str(phase.dispatched),
            str(phase.succeeded),
            str(phase.failed),
            str(phase.peak_in_flight),
            f"{phase.throughput:,.1f}",
        )
    console.print(table)
    console.print(f"[bold]recall[/bold] {report.recall:.4f}")


@app.command()
def run(
    ctx: typer.Context,
    data_dir: Annotated[
        Optional[Path], typer.Option("--data-dir", help="Directory with base/query/groundtruth files")
    ] = None,
    store: Annotated[
        Optional[StoreBackend], typer.Option("--store", help="Vector store backend")
    ] = None,
    top_k: Annotated[
        Optional[int], typer.Option("--top-k", "-k", min=1, help="Neighbours per query")
    ] = None,
    dimension: Annotated[
        Optional[int], typer.Option("--dimension", min=1, help="Expected vector dimension")
    ] = None,
    max_in_flight: Annotated[
        Optional[int], typer.Option("--max-in-flight", min=1, help="Concurrency budget")
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", min=0, help="Per-operation timeout in seconds (0 disables)"),
    ] = None,
    min_recall: Annotated[
        Optional[float],
        typer.Option("--min-recall", min=0, max=1, help="Fail with exit code 2 below this recall"),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON")] = False,
) -> None:
    """Ingest the base corpus, run every query and report Recall@K."""

    settings = _settings(
        ctx,
        {
            "store": store,
            "dataset.data_dir": data_dir,
            "dataset.top_k": top_k,
            "dataset.dimension": dimension,
            "dataset.min_recall": min_recall,
            "dispatch.max_in_flight": max_in_flight,
            "dispatch.operation_timeout_s": timeout,
        },
    )
    dataset = settings.dataset
    for path in (dataset.base_path, dataset.query_path, dataset.ground_truth_path):
        if not path.is_file():
            typer.echo(f"error: dataset file not found: {path}", err=True)
            raise typer.Exit(EXIT_ERROR)

    try:
        vector_store = _build_store(settings)
    except VectorRecallError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(EXIT_ERROR) from exc

    try:
        orchestrator = BenchmarkOrchestrator(
            vector_store,
            max_in_flight=settings.dispatch.max_in_flight,
            operation_timeout_s=settings.dispatch.timeout_or_none,
            dimension=dataset.dimension,
        )
        report = orchestrator.run(
            dataset.base_path, dataset.query_path, dataset.ground_truth_path, dataset.top_k
        )
    except (VectorRecallError, DispatchFailure, OSError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(EXIT_ERROR) from exc
    finally:
        vector_store.close()

    if as_json:
        payload = report.to_dict()
        payload["store"] = settings.store.value
        payload["min_recall"] = dataset.min_recall
        typer.echo(json.dumps(payload, indent=2))
    else:
        _render(report)

    if report.recall is not None and report.recall < dataset.min_recall:
        typer.echo(f"error: {RecallBelowThreshold(report.recall, dataset.min_recall)}", err=True)
        raise typer.Exit(EXIT_BELOW_THRESHOLD)


@app.command("make-dataset")
def make_dataset(
    ctx: typer.Context,
    out_dir: Annotated[Path, typer.Argument(help="Directory to write the dataset into")],
    base: Annotated[int, typer.Option("--base", min=1, help="Base vectors")] = 10_000,
    queries: Annotated[int, typer.Option("--queries", min=1, help="Query vectors")] = 100,
    dimension: Annotated[int, typer.Option("--dimension", min=1, help="Vector dimension")] = 128,
    depth: Annotated[int, typer.Option("--depth", min=1, help="Neighbours per ground-truth row")] = 100,
    seed: Annotated[int, typer.Option("--seed", help="Random seed")] = 13,
) -> None:
    """Write a synthetic dataset with exact ground truth."""

    _settings(ctx, {})
    paths = make_synthetic_dataset(
        out_dir,
        base_count=base,
        query_count=queries,
        dimension=dimension,
        depth=depth,
        seed=seed,
        progress=True,
    )
    for path in paths:
        typer.echo(str(path))


@app.command()
def provision(
    ctx: typer.Context,
    dimension: Annotated[
        Optional[int], typer.Option("--dimension", min=1, help="Vector dimension of the table")
    ] = None,
) -> None:
    """Create the CQL keyspace, table and vector index without running a benchmark."""

    settings = _settings(ctx, {"dataset.dimension": dimension})
    try:
        cluster, session = connect_session(settings.cql)
        try:
            provision_schema(session, settings.cql, settings.dataset.dimension)
        finally:
            cluster.shutdown()
    except VectorRecallError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(EXIT_ERROR) from exc
    typer.echo(f"provisioned {settings.cql.keyspace}.{settings.cql.table}")


if __name__ == "__main__":
    app()
