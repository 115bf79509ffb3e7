"""Pipeline orchestrator wiring feed, diff, lookups, downloads, classification and merge."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Sequence

import structlog

from .config import ConfigRepository, PipelineConfig, RunOptions
from .engine.analyzer import BrochureAnalyzer, NullAnalyzer, analysis_columns
from .engine.diff import BaselineReader, BaselineSnapshot, IncrementalDiffEngine, find_latest_output_file
from .engine.downloader import BrochureDownloader
from .engine.errors import LocalIOError, PipelineError, RunAbortedError
from .engine.exporter import CsvExporter, is_malformed, iter_rows
from .engine.feed import CSV_DATE_FORMAT, FeedRetriever, FirmRecord, iter_firms
from .engine.fetcher import Fetcher
from .engine.lookup import BrochureLookup, BrochureRecord
from .engine.merge import MasterMerger, MergeResult
from .engine.rate_limiter import RateLimiter
from .engine.resume import ResumeLocator, ResumePoint, ResumeStatus, download_resume_locator, lookup_resume_locator
from .engine.retry import RetryExecutor, RetryPolicy
from .engine.schema import (
    BROCHURE_HEADER,
    DownloadStatus,
    FIRM_HEADER,
    IAPD_DATA_HEADER,
    MASTER_FILE_NAME,
    PROGRESS_HEADER,
    files_to_download_name,
    firm_data_name,
    incremental_name,
    progress_name,
    run_output_name,
    run_stamp,
)
from .engine.stats import RunStatistics, StatsSnapshot
from .logging_conf import ProcessingPhase, phase_logger
from .ui import ProgressActivity, ProgressReporter

ProgressFactory = Callable[[], ProgressReporter]


@dataclass(slots=True)
class RunPaths:
    """Per-run file set under ``Data/Output``."""

    firm_data: Path
    files_to_download: Path
    progress: Path
    run_output: Path
    master: Path

    @classmethod
    def for_run(cls, output_dir: Path, stamp: str, incremental: bool = False) -> "RunPaths":
        master = output_dir / MASTER_FILE_NAME
        run_output = incremental_name(master, stamp) if incremental else output_dir / run_output_name(stamp)
        return cls(
            firm_data=output_dir / firm_data_name(stamp),
            files_to_download=output_dir / files_to_download_name(stamp),
            progress=output_dir / progress_name(stamp),
            run_output=run_output,
            master=master,
        )


@dataclass(slots=True)
class RunSummary:
    run_date: str
    stats: StatsSnapshot = field(default_factory=StatsSnapshot)
    diff: dict[str, int] | None = None
    merge: MergeResult | None = None
    resume: dict[str, str] = field(default_factory=dict)
    feed_consumed: bool = False
    aborted: bool = False
    abort_reason: str = ""
    baseline: Path | None = None
    outputs: dict[str, Path] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return 0 if self.feed_consumed and not self.aborted else 1


def archive_data_dir(data_dir: Path, now: datetime | None = None) -> Path | None:
    """Rename ``Data/`` to ``Data_YYYYMMDD_HHMMSS`` so the next run starts clean."""

    if not data_dir.exists():
        return None
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    target = data_dir.with_name(f"{data_dir.name}_{stamp}")
    try:
        os.replace(data_dir, target)
    except OSError as exc:
        raise LocalIOError(f"Cannot archive {data_dir} to {target}: {exc}") from exc
    return target


def _set_aside(path: Path) -> Path | None:
    """Move an unusable progress file out of the way instead of deleting it."""

    if not path.exists():
        return None
    target = path.with_name(path.name + ".bak")
    try:
        os.replace(path, target)
    except OSError as exc:
        raise LocalIOError(f"Cannot move {path} aside: {exc}") from exc
    return target


class Orchestrator:
    """Run the pipeline phases in order for a single run date.

    The orchestrator owns the run's :class:`RunStatistics`, the two throttled
    fetchers (lookups and downloads are limited independently) and the stop flag
    that signal handlers set for cooperative cancellation.
    """

    def __init__(
        self,
        config_repository: ConfigRepository,
        config: PipelineConfig | None = None,
        *,
        analyzer: BrochureAnalyzer | None = None,
        lookup_fetcher: Fetcher | None = None,
        download_fetcher: Fetcher | None = None,
        progress_factory: ProgressFactory | None = None,
        today: date | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.config = config or config_repository.resolve()
        self.locator = config_repository.locator
        self.analyzer = analyzer or NullAnalyzer()
        self.today = today or date.today()
        self.stop_event = threading.Event()
        self.stats = RunStatistics()
        self.logger = structlog.get_logger("iapd_sync.orchestrator").bind(component="orchestrator")
        self._progress_factory = progress_factory or (
            lambda: ProgressReporter(enabled=self.config.enable_progress_bar)
        )
        retry = RetryExecutor(RetryPolicy.from_config(self.config.retry))
        limits = self.config.rate_limits
        self.lookup_fetcher = lookup_fetcher or Fetcher(
            self.config.http, RateLimiter.per_second(limits.url_rate_per_second), retry
        )
        self.download_fetcher = download_fetcher or Fetcher(
            self.config.http, RateLimiter.per_second(limits.download_rate_per_second), retry
        )

    # ------------------------------------------------------------------
    def request_stop(self) -> None:
        self.stop_event.set()

    def close(self) -> None:
        self.lookup_fetcher.close()
        self.download_fetcher.close()

    def run(self, options: RunOptions | None = None) -> RunSummary:
        options = options or self.config.options
        stamp = run_stamp(self.today)
        summary = RunSummary(run_date=stamp)
        log = phase_logger(ProcessingPhase.INITIALIZATION, run=stamp)
        try:
            if options.force_restart:
                archived = archive_data_dir(self.locator.data_dir)
                self.locator.ensure_directories()
                self.config_repository.save(self.config_repository.load())
                log.warning("data_dir_archived", archived_to=str(archived) if archived else None)
            paths = RunPaths.for_run(self.locator.output_dir, stamp, incremental=options.incremental)
            summary.outputs["run_output"] = paths.run_output

            xml_path = self._acquire_feed(options)
            if xml_path is None:
                summary.abort_reason = "feed unavailable"
                return summary

            firms = self._parse_feed(xml_path, options, paths, stamp)
            if firms is None:
                summary.aborted = True
                summary.abort_reason = "stopped while parsing feed"
                return summary
            summary.feed_consumed = True
            summary.outputs["firm_data"] = paths.firm_data

            baseline = BaselineSnapshot.empty()
            if options.incremental:
                baseline, summary.baseline = self._load_baseline(options, paths)
                diff = IncrementalDiffEngine(baseline).filter(
                    firms, lambda firm: firm.entity_id, lambda firm: firm.version_marker
                )
                summary.diff = diff.counts()
                firms = diff.to_process

            summary.resume["lookups"] = self._run_lookups(firms, options, paths, baseline).status.value
            summary.outputs["files_to_download"] = paths.files_to_download
            if self.stop_event.is_set():
                summary.aborted = True
                summary.abort_reason = "stopped during lookups"
                return summary

            summary.resume["downloads"] = self._run_downloads(options, paths).status.value
            summary.outputs["progress"] = paths.progress
            if self.stop_event.is_set():
                summary.aborted = True
                summary.abort_reason = "stopped during downloads"
                return summary

            self._write_run_output(paths)
            summary.merge = self._merge(paths)
            phase_logger(ProcessingPhase.COMPLETED, run=stamp).info("run_completed")
        except RunAbortedError as exc:
            summary.aborted = True
            summary.abort_reason = str(exc)
            phase_logger(ProcessingPhase.ERROR, run=stamp).error("run_aborted", reason=str(exc))
        except PipelineError as exc:
            summary.aborted = True
            summary.abort_reason = str(exc)
            phase_logger(ProcessingPhase.ERROR, run=stamp).error(
                "run_failed", category=exc.category.value, reason=str(exc)
            )
        finally:
            summary.stats = self.stats.snapshot()
        return summary

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def _acquire_feed(self, options: RunOptions) -> Path | None:
        log = phase_logger(ProcessingPhase.DOWNLOADING_FEED)
        if options.feed_file is not None:
            if not options.feed_file.exists():
                log.error("feed_file_missing", path=str(options.feed_file))
                return None
            log.info("feed_file_used", path=str(options.feed_file))
            return options.feed_file
        activity = ProgressActivity(enabled=self.config.enable_progress_bar)
        activity.start("Retrieving IAPD firm feed…")
        try:
            retriever = FeedRetriever(self.download_fetcher, self.config.endpoints, self.locator.downloads_dir)
            return retriever.retrieve(self.today)
        finally:
            activity.close()

    def _parse_feed(
        self,
        xml_path: Path,
        options: RunOptions,
        paths: RunPaths,
        stamp: str,
    ) -> list[FirmRecord] | None:
        """Parse every firm and publish the firm data file; ``None`` when stopped midway."""

        log = phase_logger(ProcessingPhase.PARSING_FEED, feed=str(xml_path))
        date_added = self.today.strftime(CSV_DATE_FORMAT)
        temp_path = paths.firm_data.with_name(paths.firm_data.name + ".tmp")
        if temp_path.exists():
            temp_path.unlink()
        firms: list[FirmRecord] = []
        with CsvExporter(temp_path, FIRM_HEADER, durable=False) as exporter:
            for firm in iter_firms(xml_path, index_limit=options.index_limit, should_stop=self.stop_event.is_set):
                exporter.export(firm.to_row(date_added))
                firms.append(firm)
        if self.stop_event.is_set():
            log.warning("feed_parse_interrupted", parsed=len(firms))
            temp_path.unlink()
            return None
        try:
            os.replace(temp_path, paths.firm_data)
        except OSError as exc:
            raise LocalIOError(f"Cannot publish {paths.firm_data}: {exc}") from exc
        self.stats.increment("firms_parsed", len(firms))
        log.info("feed_parsed", firms=len(firms), output=str(paths.firm_data), stamp=stamp)
        return firms

    def _load_baseline(self, options: RunOptions, paths: RunPaths) -> tuple[BaselineSnapshot, Path | None]:
        path = options.baseline_file
        if path is None:
            path = paths.master if paths.master.exists() else find_latest_output_file(self.locator.output_dir)
        snapshot = BaselineReader().load(path)
        if not snapshot.has_data:
            self.logger.warning("incremental_without_baseline", baseline=str(path) if path else None)
        return snapshot, path

    def _prepare_progress(
        self,
        locator: ResumeLocator,
        source: Sequence,
        path: Path,
        options: RunOptions,
    ) -> ResumePoint:
        if not options.resume:
            _set_aside(path)
            return ResumePoint(ResumeStatus.FULL_RUN, source_size=len(source), reason="resume disabled")
        point = locator.locate(source, path)
        if point.status is ResumeStatus.RESUME:
            locator.truncate(path, point)
        elif point.status in (ResumeStatus.FULL_RUN, ResumeStatus.NOT_POSSIBLE):
            moved = _set_aside(path)
            if moved is not None:
                self.logger.info("progress_set_aside", path=str(path), moved_to=str(moved))
        return point

    def _run_lookups(
        self,
        firms: list[FirmRecord],
        options: RunOptions,
        paths: RunPaths,
        baseline: BaselineSnapshot,
    ) -> ResumePoint:
        log = phase_logger(ProcessingPhase.EXTRACTING_BROCHURE_URLS)
        locator = lookup_resume_locator(lambda firm: firm.firm_crd_nb)
        point = self._prepare_progress(locator, firms, paths.files_to_download, options)
        if not point.should_process:
            if not paths.files_to_download.exists():
                CsvExporter(paths.files_to_download, BROCHURE_HEADER).close()
            log.info("lookups_already_complete", firms=len(firms))
            return point

        lookup = BrochureLookup(self.lookup_fetcher, self.config.endpoints)
        pending = firms[point.start_index:]
        progress = self._progress_factory()
        progress.start(total=len(firms), label="lookups", completed=point.start_index)
        processed = 0
        try:
            with CsvExporter(paths.files_to_download, BROCHURE_HEADER) as exporter:
                for firm in pending:
                    if self.stop_event.is_set():
                        log.warning("lookups_stopped", processed=processed)
                        break
                    if options.max_items is not None and processed >= options.max_items:
                        log.info("lookups_max_items_reached", max_items=options.max_items)
                        break
                    processed += 1
                    try:
                        records = lookup.lookup(firm.firm_crd_nb, firm.business_name)
                    except PipelineError as exc:
                        self.stats.record_failure(exc.category, "lookups_failed")
                        log.warning("lookup_failed", firm=firm.firm_crd_nb, category=exc.category.value, error=str(exc))
                        progress.advance(failed=True, current=firm.firm_crd_nb)
                        continue
                    known = [r for r in records if r.brochure_version_id in baseline.artifact_keys]
                    if known:
                        self.stats.increment("brochures_already_recorded", len(known))
                    for record in records:
                        if record.brochure_version_id not in baseline.artifact_keys:
                            exporter.export(record.to_row())
                    self.stats.record_success("lookups_succeeded")
                    self.stats.increment("brochures_found", len(records) - len(known))
                    progress.advance(success=True, current=firm.firm_crd_nb)
        finally:
            progress.close()
        log.info("lookups_complete", processed=processed, resume=point.status.value)
        return point

    def _run_downloads(self, options: RunOptions, paths: RunPaths) -> ResumePoint:
        log = phase_logger(ProcessingPhase.DOWNLOADING_BROCHURES)
        brochures = [
            BrochureRecord.from_row(row)
            for row in iter_rows(paths.files_to_download)
            if not is_malformed(row)
        ]
        locator = download_resume_locator()
        point = self._prepare_progress(locator, brochures, paths.progress, options)
        if not point.should_process:
            log.info("downloads_already_complete", brochures=len(brochures))
            return point

        downloader = BrochureDownloader(
            self.download_fetcher,
            self.config.endpoints,
            self.locator.downloads_dir,
            validate_pdfs=options.validate_pdfs,
            skip_downloads=options.skip_downloads,
        )
        threshold = options.local_io_failure_threshold
        progress = self._progress_factory()
        progress.start(total=len(brochures), label="downloads", completed=point.start_index)
        processed = 0
        try:
            with CsvExporter(paths.progress, PROGRESS_HEADER) as exporter:
                for record in brochures[point.start_index:]:
                    if self.stop_event.is_set():
                        log.warning("downloads_stopped", processed=processed)
                        break
                    if options.max_items is not None and processed >= options.max_items:
                        log.info("downloads_max_items_reached", max_items=options.max_items)
                        break
                    processed += 1
                    outcome = downloader.download(record)
                    row = record.to_row()
                    row["downloadStatus"] = outcome.token
                    row["fileName"] = outcome.file_name
                    exporter.export(row)
                    label = f"{record.firm_id}_{record.brochure_version_id}"
                    if outcome.failed:
                        consecutive = self.stats.record_failure(outcome.category, "downloads_failed")
                        progress.advance(failed=True, current=label)
                        if threshold and consecutive >= threshold:
                            raise RunAbortedError(
                                f"{consecutive} consecutive local I/O failures during downloads"
                            )
                    elif outcome.status is DownloadStatus.SUCCESS:
                        self.stats.record_success("downloads_succeeded")
                        progress.advance(success=True, current=label)
                    else:
                        self.stats.record_success(f"downloads_{outcome.status.value.lower()}")
                        progress.advance(skipped=True, current=label)
        finally:
            progress.close()
        log.info("downloads_complete", processed=processed, resume=point.status.value)
        return point

    def _write_run_output(self, paths: RunPaths) -> Path:
        """Join brochures with firm data and analyzer tags into the run output."""

        log = phase_logger(ProcessingPhase.PROCESSING_BROCHURES)
        firms = {
            (row.get("FirmCrdNb") or "").strip(): row
            for row in iter_rows(paths.firm_data)
            if not is_malformed(row)
        }
        temp_path = paths.run_output.with_name(paths.run_output.name + ".tmp")
        if temp_path.exists():
            temp_path.unlink()
        written = excluded = 0
        with CsvExporter(temp_path, IAPD_DATA_HEADER, durable=False) as exporter:
            for row in iter_rows(paths.progress):
                if is_malformed(row):
                    excluded += 1
                    continue
                status = DownloadStatus.parse(row.get("downloadStatus"))
                if status not in (DownloadStatus.SUCCESS, DownloadStatus.SKIPPED):
                    excluded += 1
                    continue
                firm = firms.get((row.get("firmId") or "").strip())
                if firm is None:
                    log.warning("brochure_without_firm", firm=row.get("firmId"))
                    excluded += 1
                    continue
                file_name = row.get("fileName") or ""
                tags: dict[str, str] = {}
                document = self.locator.downloads_dir / file_name
                if file_name and document.exists():
                    tags = dict(self.analyzer.analyze(document))
                output = {column: firm.get(column) or "" for column in FIRM_HEADER}
                output.update(
                    {
                        "brochureVersionId": row.get("brochureVersionId") or "",
                        "brochureName": row.get("brochureName") or "",
                        "dateSubmitted": row.get("dateSubmitted") or "",
                        "dateConfirmed": row.get("dateConfirmed") or "",
                        "File Name": file_name,
                    }
                )
                output.update(analysis_columns(tags))
                exporter.export(output)
                written += 1
        try:
            os.replace(temp_path, paths.run_output)
        except OSError as exc:
            raise LocalIOError(f"Cannot publish {paths.run_output}: {exc}") from exc
        self.stats.increment("output_rows", written)
        self.stats.increment("output_excluded", excluded)
        log.info("run_output_written", path=str(paths.run_output), rows=written, excluded=excluded)
        return paths.run_output

    def _merge(self, paths: RunPaths) -> MergeResult:
        log = phase_logger(ProcessingPhase.MERGING)
        result = MasterMerger(paths.master).merge(paths.run_output)
        log.info("master_updated", **result.as_dict())
        return result


__all__ = ["Orchestrator", "RunPaths", "RunSummary", "archive_data_dir"]
