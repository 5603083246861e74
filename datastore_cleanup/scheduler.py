from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

from .config import RunConfig
from .errors import LoggingError
from .orchestrator import CleanupOrchestrator, ExecutionReport


LOGGER = logging.getLogger("datastore_cleanup")


class CleanupScheduler:
    """Run the cleanup on a fixed interval, starting immediately."""

    def __init__(
        self,
        *,
        config: RunConfig,
        interval_seconds: int,
        orchestrator_factory: Callable[[RunConfig], CleanupOrchestrator] = CleanupOrchestrator,
    ):
        if int(interval_seconds) <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self._config = config
        self._interval_seconds = int(interval_seconds)
        self._orchestrator_factory = orchestrator_factory
        self._scheduler = BackgroundScheduler()
        self._running = False
        self._last_report: ExecutionReport | None = None
        self._scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self._interval_seconds,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_report(self) -> ExecutionReport | None:
        return self._last_report

    def start(self) -> None:
        if self._running:
            return
        self._scheduler.start()
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False

    def run_once(self) -> ExecutionReport | None:
        try:
            report = self._orchestrator_factory(self._config).run()
        except LoggingError:
            LOGGER.error("[CLEANUP]: Audit log unavailable; run for %s aborted", self._config.datastore_path, exc_info=True)
            return None
        except Exception:
            LOGGER.warning("[CLEANUP]: Cleanup run failed for %s", self._config.datastore_path, exc_info=True)
            return None
        self._last_report = report
        return report
