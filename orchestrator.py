"""Run analyzers concurrently over one changeset snapshot and fan their findings in."""

import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, wait

from analyzers import Analyzer
from changeset import Changeset
from config import ReviewConfig
from errors import AnalyzerFailure, AnalyzerTimeout
from session import AnalyzerRun, ReviewSession

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Fan-out/fan-in over a set of analyzers.

    Every analyzer runs in its own worker thread against the same read-only
    changeset. All of them share one deadline; an analyzer that misses it,
    or raises, contributes zero findings and the session carries on. No
    analyzer is retried within a session.
    """

    def __init__(self, config: ReviewConfig | None = None):
        self.config = config or ReviewConfig()

    def run(
        self,
        changeset: Changeset,
        analyzers: Iterable[Analyzer],
        timeout: float | None = None,
    ) -> ReviewSession:
        """
        Run *analyzers* and return the populated session.

        Args:
            changeset: Snapshot shared by every analyzer
            analyzers: Analyzers to launch; disabled categories are skipped
            timeout: Deadline in seconds (defaults to the configured one)

        Returns:
            ReviewSession with findings from analyzers that completed in time
        """
        timeout = self.config.analyzer_timeout if timeout is None else timeout
        session = ReviewSession(changeset=changeset)

        active: list[Analyzer] = []
        for analyzer in analyzers:
            run = AnalyzerRun(name=analyzer.name, category=analyzer.category)
            session.register(run)
            if analyzer.category not in self.config.enabled_categories:
                run.status = "skipped"
                session.close_source(analyzer.name)
                logger.info("⏭️  Skipping %s (category %s disabled)", analyzer.name, analyzer.category)
                continue
            active.append(analyzer)

        if not active:
            logger.info("No analyzers to run")
            return session

        logger.info("🚀 Launching %d analyzer(s), deadline %.1fs", len(active), timeout)

        cancel_events = {a.name: threading.Event() for a in active}
        started = time.monotonic()
        executor = ThreadPoolExecutor(
            max_workers=len(active), thread_name_prefix="analyzer"
        )
        try:
            futures = {
                executor.submit(
                    self._drive, analyzer, changeset, session, cancel_events[analyzer.name]
                ): analyzer
                for analyzer in active
            }
            done, not_done = wait(futures, timeout=timeout)

            for future in not_done:
                analyzer = futures[future]
                cancel_events[analyzer.name].set()
                future.cancel()
                self._fail(
                    session,
                    AnalyzerTimeout(analyzer.name, f"no result within {timeout:.1f}s"),
                    status="timeout",
                    elapsed=time.monotonic() - started,
                )

            for future in done:
                analyzer = futures[future]
                error = future.exception()
                if error is not None:
                    self._fail(
                        session,
                        AnalyzerFailure(analyzer.name, f"{type(error).__name__}: {error}"),
                        status="failed",
                        elapsed=time.monotonic() - started,
                    )
                    continue
                run = session.runs[analyzer.name]
                run.status = "completed"
                run.elapsed = time.monotonic() - started
                session.close_source(analyzer.name)
                logger.info(
                    "✅ %s finished: %d finding(s) in %.2fs",
                    analyzer.name,
                    run.findings,
                    run.elapsed,
                )
        finally:
            # Abandon stuck workers; their late output is refused by the session
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "📥 Fan-in complete: %d finding(s), %d failed analyzer(s)",
            len(session.findings),
            len(session.failed_runs()),
        )
        return session

    @staticmethod
    def _drive(
        analyzer: Analyzer,
        changeset: Changeset,
        session: ReviewSession,
        cancelled: threading.Event,
    ) -> None:
        """Pull findings from one analyzer into the session until done or cancelled."""
        for finding in analyzer.analyze(changeset):
            if cancelled.is_set():
                logger.debug("%s cancelled, stopping iteration", analyzer.name)
                return
            if session.add_finding(analyzer.name, finding) is None:
                return

    @staticmethod
    def _fail(
        session: ReviewSession,
        error: AnalyzerFailure,
        status: str,
        elapsed: float,
    ) -> None:
        run = session.runs[error.analyzer]
        dropped = session.close_source(error.analyzer, discard=True)
        run.status = status
        run.error = str(error)
        run.elapsed = elapsed
        logger.warning(
            "⚠️  Analyzer %s %s: %s (%d partial finding(s) discarded)",
            error.analyzer,
            status,
            error,
            dropped,
        )
