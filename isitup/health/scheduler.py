"""Monitor scheduler — recurring check cycles and retention cleanup.

Uses APScheduler's AsyncIOScheduler with three jobs:

- ``check-cycle``: cron, probes every enabled site (default every 5 minutes)
- ``cleanup``: cron, purges checks past the retention window (default 03:00 UTC)
- ``startup-check``: one-shot cycle shortly after start

At most one check cycle runs at a time. A trigger that fires while a cycle is
still running is skipped, not queued. Probes run in a thread pool so a slow
site never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from isitup.config import settings
from isitup.notifications.discord import DiscordNotifier, resolve_webhook_url

from .models import Check, Site, Status, utcnow
from .prober import Prober
from .store import CheckStore, SiteSource

logger = logging.getLogger(__name__)

CHECK_JOB_ID = "check-cycle"
CLEANUP_JOB_ID = "cleanup"
STARTUP_JOB_ID = "startup-check"


@dataclass
class SchedulerConfig:
    check_interval_cron: str = "*/5 * * * *"
    cleanup_cron: str = "0 3 * * *"
    initial_delay_ms: int = 10_000
    retention_days: int = 30
    check_concurrency: int = 4

    @classmethod
    def from_settings(cls) -> SchedulerConfig:
        return cls(
            check_interval_cron=settings.check_interval_cron,
            cleanup_cron=settings.cleanup_cron,
            initial_delay_ms=settings.initial_delay_ms,
            retention_days=settings.retention_days,
            check_concurrency=settings.check_concurrency,
        )


@dataclass
class SiteOutcome:
    """Result-or-error for one site in a cycle."""

    site_id: str
    site_name: str
    check: Check | None = None
    previous_status: Status | None = None
    notified: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> Status | None:
        return self.check.status if self.check else None


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[SiteOutcome] = field(default_factory=list)
    skipped: bool = False
    error: str | None = None

    @property
    def failures(self) -> list[SiteOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "error": self.error,
            "sites": len(self.outcomes),
            "failures": len(self.failures),
        }


class MonitorScheduler:
    """Owns the check-cycle / cleanup schedule and the overlap guard.

    Lifecycle:
        scheduler = MonitorScheduler(store, store, notifier)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        sites: SiteSource,
        store: CheckStore,
        notifier: DiscordNotifier | None = None,
        prober: Prober | None = None,
        config: SchedulerConfig | None = None,
        default_webhook_url: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.sites = sites
        self.store = store
        self.notifier = notifier or DiscordNotifier()
        self.prober = prober or Prober(clock=clock)
        self.config = config or SchedulerConfig.from_settings()
        self.default_webhook_url = default_webhook_url
        self.clock = clock
        self._executor: ThreadPoolExecutor | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._cycle_lock = asyncio.Lock()
        self._site_locks: dict[str, asyncio.Lock] = {}
        self.last_cycle: CycleReport | None = None
        self.last_cleanup: datetime | None = None

    # -- lifecycle -------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    async def start(self) -> None:
        """Register the jobs and start the scheduling loop."""
        if self.running:
            return

        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.run_cycle,
            CronTrigger.from_crontab(self.config.check_interval_cron, timezone="UTC"),
            id=CHECK_JOB_ID,
            name="Check all enabled sites",
            coalesce=True,
        )
        scheduler.add_job(
            self.run_cleanup,
            CronTrigger.from_crontab(self.config.cleanup_cron, timezone="UTC"),
            id=CLEANUP_JOB_ID,
            name="Purge old checks",
            coalesce=True,
        )
        scheduler.add_job(
            self.run_cycle,
            DateTrigger(
                run_date=self.clock() + timedelta(milliseconds=self.config.initial_delay_ms),
                timezone="UTC",
            ),
            id=STARTUP_JOB_ID,
            name="Initial check",
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            "Monitor scheduler started: checks '%s', cleanup '%s', first check in %dms",
            self.config.check_interval_cron,
            self.config.cleanup_cron,
            self.config.initial_delay_ms,
        )

    async def stop(self) -> None:
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info("Monitor scheduler stopped")

    def status(self) -> dict[str, Any]:
        jobs = {}
        if self._scheduler is not None:
            for job in self._scheduler.get_jobs():
                next_run = getattr(job, "next_run_time", None)
                jobs[job.id] = next_run.isoformat() if next_run else None
        return {
            "running": self.running,
            "cycle_in_progress": self.cycle_in_progress,
            "last_cycle": self.last_cycle.to_dict() if self.last_cycle else None,
            "last_cleanup": self.last_cleanup.isoformat() if self.last_cleanup else None,
            "next_runs": jobs,
            "config": {
                "check_interval_cron": self.config.check_interval_cron,
                "cleanup_cron": self.config.cleanup_cron,
                "retention_days": self.config.retention_days,
            },
        }

    # -- check cycle -----------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        """Check every enabled site once. Skips if a cycle is already running."""
        if self._cycle_lock.locked():
            logger.info("Previous check cycle still running, skipping")
            return CycleReport(started_at=self.clock(), finished_at=self.clock(), skipped=True)

        async with self._cycle_lock:
            report = CycleReport(started_at=self.clock())
            try:
                sites = await self._run_blocking(self.sites.list_enabled_sites)
                logger.info("Starting check cycle: %d enabled sites", len(sites))

                limit = asyncio.Semaphore(max(1, self.config.check_concurrency))

                async def _bounded(site: Site) -> SiteOutcome:
                    async with limit:
                        return await self._check_site_isolated(site)

                report.outcomes = list(await asyncio.gather(*(_bounded(s) for s in sites)))
            except Exception as e:
                logger.exception("Check cycle failed")
                report.error = str(e) or type(e).__name__
            finally:
                report.finished_at = self.clock()
                self.last_cycle = report

        logger.info(
            "Check cycle complete: %d sites, %d failures",
            len(report.outcomes), len(report.failures),
        )
        return report

    async def check_site_now(self, site: Site) -> SiteOutcome:
        """On-demand check of one site, outside the scheduled cycle.

        Does not take the cycle guard; the per-site lock keeps it from
        interleaving with a scheduled check of the same site. Errors propagate.
        """
        return await self._check_site(site)

    async def _check_site_isolated(self, site: Site) -> SiteOutcome:
        try:
            return await self._check_site(site)
        except Exception as e:
            logger.exception("Error checking %s", site.name)
            return SiteOutcome(site_id=site.id, site_name=site.name, error=str(e) or type(e).__name__)

    async def _check_site(self, site: Site) -> SiteOutcome:
        lock = self._site_locks.setdefault(site.id, asyncio.Lock())
        async with lock:
            latest = await self._run_blocking(self.store.get_latest_check, site.id)
            previous = latest.status if latest else None

            result = await self._run_blocking(self.prober.perform_check, site)
            check = Check.from_result(site.id, result, timestamp=self.clock())
            await self._run_blocking(self.store.insert_check, check)

            logger.info(
                "%s: %s (%sms)%s",
                site.name, check.status.value, check.response_time_ms,
                f" - {check.error_message}" if check.error_message else "",
            )

            outcome = SiteOutcome(
                site_id=site.id, site_name=site.name, check=check, previous_status=previous,
            )
            if previous != check.status:
                outcome.notified = await self._notify_transition(site, check, previous)
            return outcome

    async def _notify_transition(
        self, site: Site, check: Check, previous: Status | None,
    ) -> bool:
        # The check is already stored; nothing here may undo or block that
        try:
            user = None
            if site.user_id:
                user = await self._run_blocking(self.sites.get_user, site.user_id)
            webhook_url = resolve_webhook_url(
                user.discord_webhook_url if user else None, self.default_webhook_url,
            )
            if not webhook_url:
                return False
            return await self.notifier.notify(webhook_url, site, check, previous)
        except Exception:
            logger.exception("Notification for %s failed", site.name)
            return False

    # -- cleanup ---------------------------------------------------------------

    async def run_cleanup(self) -> int:
        """Delete checks older than the retention window. Returns rows removed."""
        cutoff = self.clock() - timedelta(days=self.config.retention_days)
        logger.info("Running cleanup (cutoff %s)", cutoff.isoformat())
        try:
            removed = await self._run_blocking(self.store.delete_checks_older_than, cutoff)
        except Exception:
            logger.exception("Cleanup failed")
            return 0
        self.last_cleanup = self.clock()
        logger.info("Cleanup complete: %d checks removed", removed or 0)
        return removed or 0

    async def _run_blocking(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self._executor is None:
            # Created lazily; stop() discards it
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, self.config.check_concurrency),
                thread_name_prefix="isitup-probe",
            )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)


async def start_scheduler(
    sites: SiteSource,
    store: CheckStore,
    config: SchedulerConfig | None = None,
    **kwargs: Any,
) -> MonitorScheduler:
    """Create a MonitorScheduler and start it."""
    scheduler = MonitorScheduler(sites, store, config=config, **kwargs)
    await scheduler.start()
    return scheduler
