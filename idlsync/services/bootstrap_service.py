"""
Bootstrap service for idlsync.

Runs one full sync: prepare the cache and working repository, refresh
every remote, extract, aggregate and publish. Used by the
`idlsync bootstrap` command and the Python API.

A run moves through INIT -> CACHE_READY -> EXTRACTED -> AGGREGATED ->
PUBLISHED, or ends in FAILED at any stage. Per-source failures and
collisions are collected into the RunReport rather than raised.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

from ..config import SyncSettings
from ..domain.result import (
    AggregationResult,
    ProvenanceRecord,
    RunReport,
    RunStage,
    SourceError,
    StaleEntry,
)
from ..domain.source import CachedWorkingCopy, RemoteSource, SourceExtraction
from ..exit_codes import PublishError
from ..infra.git_client import GitClient, GitCommandError
from .aggregator import Aggregator
from .extractor import FileExtractor
from .publisher import Publisher
from .remote_cache import RemoteCache

logger = logging.getLogger(__name__)


class RunCancelled(Exception):
    """A task was skipped because the run was cancelled."""

    def __init__(self):
        super().__init__("cancelled")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='seconds')


class BootstrapService:
    """
    Orchestrates a bootstrap (sync) run.

    Example:
        service = BootstrapService(settings)

        for progress in service.run():
            print(progress)  # "Refreshing 4 remote(s)..."

        report = service.last_report
        print(report.success, report.commit)
    """

    def __init__(
        self,
        settings: SyncSettings,
        git_client: Optional[GitClient] = None,
        cache: Optional[RemoteCache] = None,
        extractor: Optional[FileExtractor] = None,
        aggregator: Optional[Aggregator] = None,
        publisher: Optional[Publisher] = None
    ):
        """
        Initialize BootstrapService.

        Args:
            settings: Validated settings for this run
            git_client: GitClient shared by cache and publisher (creates new if None)
            cache: Remote cache handle (built from settings if None)
            extractor: File extractor (built from settings if None)
            aggregator: Aggregator (built from settings if None)
            publisher: Publisher (built from settings if None)
        """
        self.settings = settings
        self.git = git_client or GitClient(
            timeout=settings.git_timeout_seconds,
            user_name=settings.git_user_name,
            user_email=settings.git_user_email,
        )
        self.cache = cache or RemoteCache(settings.cache_location, self.git)
        self.extractor = extractor or FileExtractor(
            settings.file_name_strategy, settings.extensions
        )
        self.aggregator = aggregator or Aggregator(
            settings.collision_policy, settings.publish_directory
        )
        self.publisher = publisher or Publisher(
            settings.repository_folder,
            settings.upstream,
            branch=settings.upstream_branch,
            git_client=self.git,
            publish_directory=settings.publish_directory,
            commit_message=settings.commit_message,
            allow_empty_commits=settings.allow_empty_commits,
            push=settings.push,
        )
        self.last_report: Optional[RunReport] = None
        self.last_result: Optional[AggregationResult] = None
        self._cancel = threading.Event()
        self._attempting = RunStage.INIT

    # ------------------------------------------------------------------
    # Cancellation

    def cancel(self) -> None:
        """Request cooperative cancellation; takes effect between tasks and stages."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Entry points

    def bootstrap(self, progress: Optional[Callable[[str], None]] = None) -> RunReport:
        """
        Run a full sync and return its report.

        Args:
            progress: Optional callback receiving progress messages
        """
        runner = self.run()
        while True:
            try:
                message = next(runner)
            except StopIteration as finished:
                return finished.value
            logger.debug(message)
            if progress:
                progress(message)

    def run(self) -> Generator[str, None, RunReport]:
        """
        Run a full sync.

        Yields:
            Progress messages

        Returns:
            RunReport with the outcome
        """
        self._cancel.clear()
        report = RunReport(
            started_at=_now(),
            sources=[s.name for s in self.settings.sources],
        )
        self.last_report = report
        self.last_result = None

        try:
            # single writer of the working repository from INIT to PUBLISHED
            with self.publisher.locked():
                yield from self._run(report)
        except Exception as e:
            stage = self._attempting
            logger.exception(f"Unexpected error during {stage.value}")
            report.fail(stage, f"Unexpected error: {e}")
            yield f"✗ {stage.value}: unexpected error: {e}"
        finally:
            report.source_errors.sort(key=lambda e: (e.source, e.stage))
            report.finished_at = _now()

        if report.success:
            logger.info(f"Bootstrap published {report.commit} ({len(report.files)} file(s))")
        elif report.failed_stage:
            logger.error(f"Bootstrap failed at {report.failed_stage.value}: {report.error}")
        return report

    # ------------------------------------------------------------------
    # Stages

    def _run(self, report: RunReport) -> Generator[str, None, None]:
        sources = list(self.settings.sources)
        self._attempting = RunStage.INIT

        # INIT: everything local must be usable before any remote work
        if not sources:
            report.fail(RunStage.INIT, "No remote sources configured")
            yield "✗ No remote sources configured"
            return
        try:
            self.cache.init()
        except OSError as e:
            report.fail(RunStage.INIT, f"Cannot create cache directory {self.cache.root}: {e}")
            yield f"✗ {report.error}"
            return

        yield f"Preparing working repository {self.publisher.path}..."
        try:
            self.publisher.prepare()
        except PublishError as e:
            report.fail(RunStage.INIT, str(e))
            yield f"✗ {e}"
            return
        previous = self.publisher.previous_provenance()

        if self._stop(report, RunStage.CACHE_READY):
            yield "✗ Cancelled"
            return

        # CACHE_READY
        self._attempting = RunStage.CACHE_READY
        yield (
            f"Refreshing {len(sources)} remote(s) "
            f"(parallel={min(self.settings.max_concurrent_operations, len(sources))})..."
        )
        copies: Dict[str, CachedWorkingCopy] = {}
        for source, outcome in self._parallel(self.cache.ensure, sources, (GitCommandError, OSError)):
            if isinstance(outcome, Exception):
                report.source_errors.append(SourceError(source.name, "cache", str(outcome)))
                yield f"  ✗ {source.name}: {outcome}"
            else:
                copies[source.name] = outcome
                yield f"  ✓ {source.name}: {outcome.commit[:12]}{' (cloned)' if outcome.recloned else ''}"

        if self._stop(report, RunStage.CACHE_READY):
            yield "✗ Cancelled"
            return
        if not copies:
            report.fail(RunStage.CACHE_READY, "No remote sources could be refreshed")
            yield f"✗ {report.error}"
            return
        report.stage = RunStage.CACHE_READY

        # EXTRACTED
        self._attempting = RunStage.EXTRACTED
        cached = [s for s in sources if s.name in copies]
        yield f"Extracting IDL files from {len(cached)} source(s)..."
        extractions: List[SourceExtraction] = []
        for source, outcome in self._parallel(
            lambda s: self.extractor.extract(s, copies[s.name]), cached, (OSError,)
        ):
            if isinstance(outcome, Exception):
                report.source_errors.append(SourceError(source.name, "extract", str(outcome)))
                yield f"  ✗ {source.name}: {outcome}"
            else:
                extractions.append(outcome)
                yield f"  {source.name}: {len(outcome.files)} file(s)"

        if self._stop(report, RunStage.EXTRACTED):
            yield "✗ Cancelled"
            return
        if not extractions:
            report.fail(RunStage.EXTRACTED, "No sources could be extracted")
            yield f"✗ {report.error}"
            return
        report.stage = RunStage.EXTRACTED

        # AGGREGATED
        self._attempting = RunStage.AGGREGATED
        result = self.aggregator.aggregate(
            extractions, stale=self._stale_entries(report.source_errors, previous)
        )
        self.last_result = result
        report.collisions = list(result.collisions)
        for collision in result.collisions:
            yield f"  ! collision on {collision.public_name}: {', '.join(collision.sources)} -> {collision.winner}"

        if result.collisions and self.settings.fail_on_collision:
            names = ', '.join(c.public_name for c in result.collisions)
            report.fail(RunStage.AGGREGATED, f"{len(result.collisions)} collision(s): {names}")
            yield f"✗ {report.error}"
            return
        if self._stop(report, RunStage.PUBLISHED):
            yield "✗ Cancelled"
            return
        report.stage = RunStage.AGGREGATED

        # PUBLISHED
        self._attempting = RunStage.PUBLISHED
        yield f"Publishing {len(result.files)} file(s)..."
        try:
            outcome = self.publisher.publish(result)
        except PublishError as e:
            report.fail(RunStage.PUBLISHED, str(e))
            yield f"✗ {e}"
            return

        report.commit = outcome.commit
        report.committed = outcome.committed
        report.pushed = outcome.pushed
        report.files = sorted(self.aggregator.published_path(n) for n in result.files)
        report.contributions = {
            name: list(entry.files) for name, entry in result.provenance.remotes.items()
        }
        report.stage = RunStage.PUBLISHED

        if outcome.committed:
            yield f"✓ Published {outcome.commit[:12] if outcome.commit else ''}{'' if outcome.pushed else ' (not pushed)'}"
        else:
            yield "✓ No changes to publish"

    # ------------------------------------------------------------------
    # Helpers

    def _parallel(
        self,
        func: Callable[[RemoteSource], Any],
        sources: Sequence[RemoteSource],
        expected: Tuple[type, ...]
    ) -> Generator[Tuple[RemoteSource, Any], None, None]:
        """
        Run ``func`` for every source on a bounded pool.

        Yields (source, result) as tasks complete; expected exceptions and
        cancellation are yielded in place of the result. Tasks not yet
        started when cancellation is noticed are cancelled.
        """
        def guarded(source: RemoteSource) -> Any:
            if self._cancel.is_set():
                return RunCancelled()
            try:
                return func(source)
            except expected as e:
                logger.warning(f"{source.name}: {e}")
                return e

        workers = max(1, min(self.settings.max_concurrent_operations, len(sources)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(guarded, s): s for s in sources}

            for future in as_completed(futures):
                if self._cancel.is_set():
                    for pending in futures:
                        pending.cancel()
                if future.cancelled():
                    yield futures[future], RunCancelled()
                else:
                    yield futures[future], future.result()

    def _stale_entries(
        self,
        errors: List[SourceError],
        previous: ProvenanceRecord
    ) -> Dict[str, StaleEntry]:
        """Flag failed sources with what they had in the previous publish."""
        stale: Dict[str, StaleEntry] = {}
        for error in errors:
            last = previous.last_known(error.source)
            stale[error.source] = StaleEntry(
                commit=last.commit if last else None,
                files=list(last.files) if last else [],
                error=error.error,
            )
        return stale

    def _stop(self, report: RunReport, stage: RunStage) -> bool:
        if self._cancel.is_set():
            report.fail(stage, "cancelled")
            return True
        return False

