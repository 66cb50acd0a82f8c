# src/chainmirror/cli.py
"""chainmirror Command Line Interface.

Entry point for the chainmirror CLI tool.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from chainmirror import __version__
from chainmirror.contracts import (
    AggregateWorkError,
    ChainMirrorError,
    ConfigurationError,
    FailurePolicy,
    SourceBackend,
    WorkItemFailed,
)
from chainmirror.contracts.progress import NullProgressReporter, ProgressReporter
from chainmirror.core.config import ChainMirrorSettings, load_settings, resolve_store_url
from chainmirror.core.logging import configure_logging

__all__ = ["app"]

app = typer.Typer(
    name="chainmirror",
    help="chainmirror: resumable block ingestion into a relational store.",
    no_args_is_help=True,
)


class RichProgressReporter:
    """ProgressReporter drawing a rich progress bar on stderr."""

    def __init__(self, console: Console | None = None, description: str = "Ingesting blocks") -> None:
        self._progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=console or Console(stderr=True),
            transient=False,
        )
        self._description = description
        self._task_id: Any = None

    def start(self, total: int) -> None:
        self._progress.start()
        self._task_id = self._progress.add_task(self._description, total=total)

    def advance(self) -> None:
        self._progress.advance(self._task_id)

    def finish(self) -> None:
        self._progress.stop()


def _show_version(requested: bool) -> None:
    if requested:
        typer.echo(f"chainmirror version {__version__}")
        raise typer.Exit()


def _apply_env_file(env_file: Path | None) -> None:
    """Export entries of a .env file so CHAINMIRROR_* settings can live there.

    Without an explicit file, the nearest .env from the working directory
    upwards is used, if any. Variables already set in the environment keep
    their values.
    """
    from dotenv import find_dotenv, load_dotenv

    if env_file is None:
        found = find_dotenv(usecwd=True)
        if found:
            load_dotenv(found, override=False)
        return
    if not env_file.is_file():
        typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    load_dotenv(env_file, override=False)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_show_version,
        is_eager=True,
        help="Print the chainmirror version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Do not read any .env file."),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Read environment variables from this file instead of searching for .env.",
    ),
) -> None:
    """chainmirror: resumable block ingestion into a relational store."""
    configure_logging()

    if no_dotenv:
        if env_file is not None:
            typer.secho("Warning: --no-dotenv given, ignoring --env-file.", fg=typer.colors.YELLOW, err=True)
        return
    _apply_env_file(env_file)


def _parse_types(types: str | None) -> dict[str, Any] | None:
    """Accept type definitions as inline JSON or as a path to a JSON file.

    Inline JSON is tried first: bundles are often longer than the OS allows
    for a file name.
    """
    if types is None:
        return None
    try:
        parsed = json.loads(types)
    except json.JSONDecodeError as inline_error:
        parsed = _read_types_file(Path(types).expanduser(), inline_error)
    if not isinstance(parsed, dict):
        typer.echo("Error: --types must be a JSON object", err=True)
        raise typer.Exit(1)
    return parsed


def _read_types_file(path: Path, inline_error: json.JSONDecodeError) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        typer.echo(f"Error: --types is not valid JSON: {inline_error}", err=True)
        raise typer.Exit(1) from None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --types file {path} is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None


def _load_or_exit(settings_file: Path | None, overrides: dict[str, Any]) -> ChainMirrorSettings:
    try:
        return load_settings(settings_file, overrides)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings_file}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings_file}", err=True)
        raise typer.Exit(1) from None
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


def _source_overrides(chain: str | None, backend: SourceBackend | None, types: str | None) -> dict[str, Any]:
    return {"url": chain, "backend": backend.value if backend else None, "type_definitions": _parse_types(types)}


@app.command()
def ingest(
    chain: str | None = typer.Option(None, "--chain", "-c", help="Source endpoint URL."),
    out: str | None = typer.Option(
        None,
        "--out",
        "-o",
        help="SQLite file path or SQLAlchemy database URL.",
    ),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    backend: SourceBackend | None = typer.Option(None, "--backend", "-b", help="Source backend."),
    types: str | None = typer.Option(
        None,
        "--types",
        help="Custom type definitions as JSON (or a path to a JSON file). Substrate backend only.",
    ),
    parallel_requests: int | None = typer.Option(
        None,
        "--parallel-requests",
        "-p",
        help="Maximum blocks in flight at once (default 100).",
    ),
    up_to_block: int | None = typer.Option(
        None,
        "--up-to-block",
        help="Skip blocks numbered at or above this value.",
    ),
    max_block_count: int | None = typer.Option(
        None,
        "--max-block-count",
        help="Ingest at most this many pending blocks.",
    ),
    latest_first: bool = typer.Option(False, "--latest-first", help="Ingest the selected blocks newest first."),
    best_effort: bool = typer.Option(
        False,
        "--best-effort",
        help="Keep going after a block fails; report all failures at the end.",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
    no_progress: bool = typer.Option(False, "--no-progress", help="Do not draw a progress bar."),
) -> None:
    """Ingest every block not yet stored, resuming where previous runs stopped."""
    overrides: dict[str, Any] = {
        "source": _source_overrides(chain, backend, types),
        "store": {"url": resolve_store_url(out) if out else None},
        "ingest": {
            "concurrency": parallel_requests,
            "up_to": up_to_block,
            "max_count": max_block_count,
            "latest_first": True if latest_first else None,
            "failure_policy": FailurePolicy.BEST_EFFORT.value if best_effort else None,
        },
        "logging": {
            "level": log_level.upper() if log_level else None,
            "json_output": True if json_logs else None,
        },
    }
    config = _load_or_exit(settings, overrides)
    configure_logging(json_output=config.logging.json_output, level=config.logging.level)

    from chainmirror.core.store import RecordStore, StoreDB
    from chainmirror.engine import run_ingestion
    from chainmirror.sources import open_chain_source

    progress: ProgressReporter = NullProgressReporter() if no_progress else RichProgressReporter()

    try:
        with StoreDB(config.store.url, echo=config.store.echo) as db:
            source = open_chain_source(config.source)
            try:
                result = run_ingestion(config, source, RecordStore(db), progress=progress)
            finally:
                source.close()
    except WorkItemFailed as e:
        typer.echo(f"Error: block {e.item} failed: {e.failure.error}", err=True)
        raise typer.Exit(1) from None
    except AggregateWorkError as e:
        typer.echo(f"Error: {len(e.failures)} of {len(e.results)} blocks failed:", err=True)
        for failure in e.failures:
            typer.echo(f"  - block {failure.item}: {failure.error}", err=True)
        raise typer.Exit(1) from None
    except ChainMirrorError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(
        f"Ingested {result.ingested} blocks "
        f"({result.sub_records} extrinsics, {result.failed_sub_records} failed) "
        f"in {result.duration_seconds:.1f}s"
    )


@app.command()
def status(
    chain: str | None = typer.Option(None, "--chain", "-c", help="Source endpoint URL."),
    out: str | None = typer.Option(
        None,
        "--out",
        "-o",
        help="SQLite file path or SQLAlchemy database URL.",
    ),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    backend: SourceBackend | None = typer.Option(None, "--backend", "-b", help="Source backend."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show what the store holds and how many blocks are still pending."""
    overrides: dict[str, Any] = {
        "source": _source_overrides(chain, backend, None),
        "store": {"url": resolve_store_url(out) if out else None},
    }
    config = _load_or_exit(settings, overrides)

    from chainmirror.core.store import RecordStore, StoreDB
    from chainmirror.engine import store_status
    from chainmirror.sources import open_chain_source

    try:
        with StoreDB(config.store.url, echo=config.store.echo) as db:
            source = open_chain_source(config.source)
            try:
                report = store_status(config, source, RecordStore(db))
            finally:
                source.close()
    except ChainMirrorError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "head": report.head,
                    "pending": report.pending,
                    "total_records": report.summary.total_records,
                    "complete_records": report.summary.complete_records,
                    "highest_complete": report.summary.highest_complete,
                }
            )
        )
        return

    typer.echo(f"Chain head:        {report.head}")
    typer.echo(f"Stored blocks:     {report.summary.total_records}")
    typer.echo(f"Complete blocks:   {report.summary.complete_records}")
    highest = report.summary.highest_complete
    typer.echo(f"Highest complete:  {highest if highest is not None else '-'}")
    typer.echo(f"Pending:           {report.pending}")


if __name__ == "__main__":
    app()
