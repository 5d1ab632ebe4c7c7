"""
Background catalog refresh scheduler.
Ticks every catalog pipeline on an interval.
"""
import time
from typing import Callable, Dict, List, Optional, Sequence

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rightsizer.catalog.pipeline import CatalogRefreshPipeline, RefreshReport
from rightsizer.config import Settings

logger = structlog.get_logger()


class CatalogRefreshScheduler:
    """
    One interval job per catalog.

    A job that crashes or fails puts its catalog into a cooldown during
    which ticks are skipped.
    """

    def __init__(
        self,
        pipelines: Sequence[CatalogRefreshPipeline],
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scheduler = BackgroundScheduler()
        self.pipelines: Dict[str, CatalogRefreshPipeline] = {p.definition.name: p for p in pipelines}
        self.settings = settings
        self.clock = clock
        self.is_running = False
        self._cooldown_until: Dict[str, float] = {}
        self.logger = logger.bind(component="catalog_scheduler")

    def in_cooldown(self, name: str) -> bool:
        until = self._cooldown_until.get(name)
        return until is not None and self.clock() < until

    def run_pipeline(self, name: str) -> Optional[RefreshReport]:
        """
        Tick one pipeline.

        Returns:
            The report, or None if skipped by cooldown or crashed
        """
        if self.in_cooldown(name):
            self.logger.debug("refresh_cooling_down", catalog=name)
            return None

        try:
            report = self.pipelines[name].tick()
        except Exception:
            self.logger.exception("refresh_job_crashed", catalog=name)
            self._start_cooldown(name)
            return None

        if not report.succeeded:
            self._start_cooldown(name)
        else:
            self._cooldown_until.pop(name, None)
        return report

    def _start_cooldown(self, name: str) -> None:
        seconds = self.settings.catalog_refresh_cooldown_seconds
        self._cooldown_until[name] = self.clock() + seconds
        self.logger.warning("refresh_cooldown_started", catalog=name, seconds=seconds)

    def start(self) -> None:
        """Start the scheduler."""
        if not self.settings.catalog_refresh_enabled:
            self.logger.info("catalog_refresh_disabled")
            return

        if self.is_running:
            self.logger.warning("scheduler_already_running")
            return

        for name in self.pipelines:
            self.scheduler.add_job(
                self.run_pipeline,
                trigger=IntervalTrigger(seconds=self.settings.catalog_refresh_interval_seconds),
                args=[name],
                id=f"catalog_refresh_{name}",
                name=f"Catalog refresh: {name}",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )

        self.scheduler.start()
        self.is_running = True
        self.logger.info(
            "scheduler_started",
            catalogs=list(self.pipelines),
            interval_seconds=self.settings.catalog_refresh_interval_seconds,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self.is_running:
            return

        self.scheduler.shutdown()
        self.is_running = False
        self.logger.info("scheduler_stopped")

    def run_now(self, name: Optional[str] = None) -> List[RefreshReport]:
        """Tick one catalog, or all of them, immediately."""
        names = [name] if name else list(self.pipelines)
        reports = []
        for n in names:
            self.logger.info("refresh_triggered_manually", catalog=n)
            report = self.run_pipeline(n)
            if report is not None:
                reports.append(report)
        return reports
