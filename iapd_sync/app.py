"""Typer CLI entrypoint for IAPD sync."""

from __future__ import annotations

import signal
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Iterator, Optional

import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, PipelineConfig
from .engine.diff import BaselineReader, IncrementalDiffEngine, find_latest_output_file
from .engine.exporter import is_malformed, iter_rows
from .engine.feed import FirmRecord
from .engine.lookup import BrochureRecord
from .engine.merge import MasterMerger
from .engine.errors import PipelineError
from .engine.resume import ResumePoint, ResumeStats, download_resume_locator, lookup_resume_locator
from .engine.schema import MASTER_FILE_NAME, run_stamp
from .logging_conf import available_logs, configure_logging, tail_log
from .orchestrator import Orchestrator, RunPaths, RunSummary

app = typer.Typer(
    help="IAPD sync: resumable, rate-limited incremental sync of the SEC adviser feed.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
resume_app = typer.Typer(name="resume", help="Inspect resume state.", no_args_is_help=True, rich_markup_mode=None)
config_app = typer.Typer(name="config", help="Configuration commands.", no_args_is_help=True, rich_markup_mode=None)
log_app = typer.Typer(name="log", help="Log viewing commands.", no_args_is_help=True, rich_markup_mode=None)

console = Console()

OrchestratorFactory = Callable[[ConfigRepository, PipelineConfig], Orchestrator]


@dataclass
class AppState:
    repository: ConfigRepository
    orchestrator_factory: OrchestratorFactory
    verbose: bool = False


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    configure_logging(verbose=verbose, log_dir=repository.locator.logs_dir)
    return AppState(
        repository=repository,
        orchestrator_factory=lambda repo, config: Orchestrator(repo, config),
        verbose=verbose,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _parse_run_date(value: Optional[str]) -> date:
    if not value:
        return date.today()
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError as exc:
        raise typer.BadParameter("run date must look like YYYYMMDD") from exc


@contextmanager
def _stop_on_signals(orchestrator: Orchestrator) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cooperative stop request for the duration of a run."""

    def _handler(signum, _frame) -> None:
        console.print(f"Received signal {signum}, finishing the current item…", style="yellow")
        orchestrator.request_stop()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _render_summary(summary: RunSummary) -> Table:
    table = Table(title=f"Run {summary.run_date}", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for name, value in sorted(summary.stats.counters.items()):
        table.add_row(name, str(value))
    for category, count in sorted(summary.stats.failures.items()):
        table.add_row(f"failures:{category}", str(count))
    if summary.diff is not None:
        for name, value in summary.diff.items():
            table.add_row(f"diff:{name}", str(value))
    for phase, status in summary.resume.items():
        table.add_row(f"resume:{phase}", status)
    if summary.merge is not None:
        table.add_row("merge:appended", str(summary.merge.appended))
        table.add_row("merge:duplicates", str(summary.merge.duplicates))
        table.add_row("merge:keyless", str(summary.merge.keyless))
    table.add_row("feed consumed", "yes" if summary.feed_consumed else "no")
    if summary.aborted or summary.abort_reason:
        table.add_row("aborted", summary.abort_reason or "yes")
    return table


def _render_resume_point(title: str, point: ResumePoint, stats: ResumeStats) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green", overflow="fold")
    table.add_row("status", point.status.value)
    table.add_row("resume index", str(point.start_index))
    table.add_row("complete rows", str(point.completed_rows))
    table.add_row("rows in file", str(point.total_rows))
    table.add_row("source items", str(point.source_size))
    if point.reason:
        table.add_row("reason", point.reason)
    table.add_row("summary", str(stats))
    return table


app.add_typer(resume_app, name="resume", help="Show resume points for a run date")
app.add_typer(config_app, name="config", help="Show or initialise the configuration file")
app.add_typer(log_app, name="log", help="List or tail log files")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@app.command("run", help="Run the pipeline: feed, lookups, downloads, output, merge.")
def run(
    ctx: typer.Context,
    index_limit: Optional[int] = typer.Option(None, "--index-limit", "-l", min=1, help="Stop parsing after N firms."),
    max_items: Optional[int] = typer.Option(None, "--max-items", min=1, help="Process at most N items per phase."),
    incremental: bool = typer.Option(False, "--incremental", "-i", help="Only process new or updated firms."),
    baseline_file: Optional[Path] = typer.Option(None, "--baseline-file", help="Baseline CSV for incremental runs."),
    url_rate: Optional[int] = typer.Option(None, "--url-rate", min=1, help="Lookup requests per second."),
    download_rate: Optional[int] = typer.Option(None, "--download-rate", min=1, help="Downloads per second."),
    force_restart: bool = typer.Option(False, "--force-restart", help="Archive Data/ and start from scratch."),
    skip_downloads: bool = typer.Option(False, "--skip-downloads", help="Record brochures without downloading."),
    no_resume: bool = typer.Option(False, "--no-resume", help="Ignore existing progress files."),
    validate_pdfs: bool = typer.Option(False, "--validate-pdfs", help="Check downloaded files are real PDFs."),
    feed_file: Optional[Path] = typer.Option(None, "--feed-file", help="Use a local feed XML instead of downloading."),
    quiet: bool = typer.Option(False, "--quiet", help="Print a one-line summary only.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    config = state.repository.resolve(
        {
            "index_limit": index_limit,
            "max_items": max_items,
            "incremental": incremental or None,
            "baseline_file": baseline_file,
            "url_rate_per_second": url_rate,
            "download_rate_per_second": download_rate,
            "force_restart": force_restart or None,
            "skip_downloads": skip_downloads or None,
            "resume": False if no_resume else None,
            "validate_pdfs": validate_pdfs or None,
            "feed_file": feed_file,
            "verbose": state.verbose or None,
        }
    )
    if quiet:
        config.enable_progress_bar = False
    orchestrator = state.orchestrator_factory(state.repository, config)
    try:
        with _stop_on_signals(orchestrator):
            summary = orchestrator.run(config.options)
    finally:
        orchestrator.close()
    if quiet:
        merged = summary.merge.appended if summary.merge is not None else 0
        failures = summary.stats.total_failures
        console.print(
            f"Run {summary.run_date}: feed consumed={summary.feed_consumed}, "
            f"failures={failures}, merged={merged}"
            + (f", aborted: {summary.abort_reason}" if summary.aborted else "")
        )
    else:
        console.print(_render_summary(summary))
    raise typer.Exit(code=summary.exit_code)


@resume_app.command("status", help="Show where lookups and downloads would resume.")
def resume_status(
    ctx: typer.Context,
    run_date: Optional[str] = typer.Option(None, "--date", help="Run date as YYYYMMDD (default today)."),
    incremental: bool = typer.Option(False, "--incremental", "-i", help="Inspect an incremental run."),
) -> None:
    state = _get_state(ctx)
    stamp = run_stamp(_parse_run_date(run_date))
    paths = RunPaths.for_run(state.repository.locator.output_dir, stamp, incremental=incremental)
    if not paths.firm_data.exists():
        console.print(f"No firm data for {stamp}: {paths.firm_data}", style="yellow")
        raise typer.Exit(code=1)

    firms = [FirmRecord.from_row(row) for row in iter_rows(paths.firm_data) if not is_malformed(row)]
    lookups = lookup_resume_locator(lambda firm: firm.firm_crd_nb)
    console.print(
        _render_resume_point(
            f"Lookups · {paths.files_to_download.name}",
            lookups.locate(firms, paths.files_to_download),
            lookups.stats(len(firms), paths.files_to_download),
        )
    )
    brochures = []
    if paths.files_to_download.exists():
        brochures = [
            BrochureRecord.from_row(row) for row in iter_rows(paths.files_to_download) if not is_malformed(row)
        ]
    downloads = download_resume_locator()
    console.print(
        _render_resume_point(
            f"Downloads · {paths.progress.name}",
            downloads.locate(brochures, paths.progress),
            downloads.stats(len(brochures), paths.progress, status_field="downloadStatus"),
        )
    )


@app.command("diff", help="Classify a firm data CSV against a baseline.")
def diff(
    ctx: typer.Context,
    firm_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="IA_FIRM_SEC_DATA CSV to classify."),
    baseline_file: Optional[Path] = typer.Option(None, "--baseline-file", help="Baseline CSV (default: latest output)."),
) -> None:
    state = _get_state(ctx)
    output_dir = state.repository.locator.output_dir
    baseline_path = baseline_file
    if baseline_path is None:
        master = output_dir / MASTER_FILE_NAME
        baseline_path = master if master.exists() else find_latest_output_file(output_dir)
    snapshot = BaselineReader().load(baseline_path)
    firms = [FirmRecord.from_row(row) for row in iter_rows(firm_file) if not is_malformed(row)]
    result = IncrementalDiffEngine(snapshot).filter(
        firms, lambda firm: firm.entity_id, lambda firm: firm.version_marker
    )
    table = Table(title=f"Diff against {baseline_path.name if baseline_path else 'empty baseline'}", box=box.SIMPLE_HEAD)
    table.add_column("Kind", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for name, value in result.counts().items():
        table.add_row(name, str(value))
    console.print(table)


@app.command("merge", help="Merge a run output file into the master file.")
def merge(
    ctx: typer.Context,
    run_output: Path = typer.Argument(..., exists=True, dir_okay=False, help="IAPD_Data_<date>.csv to merge."),
    master: Optional[Path] = typer.Option(None, "--master", help="Master file (default Output/IAPD_Data.csv)."),
) -> None:
    state = _get_state(ctx)
    master_path = master or state.repository.locator.output_dir / MASTER_FILE_NAME
    try:
        result = MasterMerger(master_path).merge(run_output)
    except PipelineError as exc:
        console.print(f"Merge failed: {exc}", style="red")
        raise typer.Exit(code=1) from exc
    action = "Created" if result.created else "Updated"
    console.print(
        f"{action} {master_path}: appended {result.appended}, duplicates {result.duplicates}, "
        f"keyless {result.keyless}",
        style="green",
    )


@config_app.command("show", help="Print the effective configuration.")
def config_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    config = state.repository.load()
    console.print(f"# {state.repository.locator.config_path()} ({config.config_source})", style="dim")
    console.print(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False, allow_unicode=True))


@config_app.command("init", help="Write the default configuration file.")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    path = state.repository.locator.config_path()
    if path.exists() and not force:
        console.print(f"{path} already exists; use --force to overwrite.", style="yellow")
        raise typer.Exit(code=1)
    written = state.repository.save(PipelineConfig())
    console.print(f"Wrote {written}", style="green")


@log_app.command("list", help="List available log files.")
def log_list() -> None:
    logs = list(available_logs())
    if not logs:
        console.print("No log files yet.", style="dim")
        return
    table = Table(title="Log files", box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of a log file.")
def log_show(
    name: str = typer.Option("pipeline.log", "--name", help="Log file name."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines to show."),
) -> None:
    matches = [path for path in available_logs() if path.name == name]
    if not matches:
        console.print(f"No log named {name}.", style="dim")
        return
    lines = tail_log(matches[0], tail)
    if not lines:
        console.print("Log is empty.", style="dim")
        return
    console.print(f"{name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
