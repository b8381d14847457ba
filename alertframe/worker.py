"""Worker mode - triggers sweeps on a remote AlertFrame server.

Use this when the server runs with SCHEDULER_ENABLED=false (for example
behind several replicas) and sweeps should come from a single place.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import Settings, settings

logger = logging.getLogger(__name__)

USER_AGENT = "AlertFrame-Worker/1.0"

# Delay before the first sweep after start
INITIAL_DELAY_SECONDS = 2


class SweepWorker:
    """Calls the server's sweep endpoint on a fixed interval."""

    def __init__(self, config: Settings = settings):
        self.config = config
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def endpoint(self) -> str:
        return f"{self.config.server_url.rstrip('/')}/api/cron/check-alerts"

    def _headers(self) -> dict:
        headers = {"User-Agent": USER_AGENT}
        if self.config.cron_secret:
            headers["Authorization"] = f"Bearer {self.config.cron_secret}"
        return headers

    async def trigger(self) -> Optional[dict]:
        """Run one remote sweep. Returns the response body, or None on failure."""
        logger.info(f"Triggering sweep at {self.endpoint}")
        try:
            async with httpx.AsyncClient(timeout=self.config.worker_timeout_seconds) as client:
                response = await client.get(self.endpoint, headers=self._headers())
        except httpx.ConnectError:
            logger.error(f"Cannot connect to server at {self.config.server_url}")
            return None
        except httpx.TimeoutException:
            logger.error("No response from server (timeout)")
            return None
        except httpx.HTTPError as e:
            logger.error(f"Request error: {e}")
            return None

        if response.status_code >= 400:
            logger.error(f"Sweep failed: HTTP {response.status_code} - {response.text[:500]}")
            return None

        data = response.json()
        self._log_summary(data)
        return data

    def _log_summary(self, data: dict):
        summary = data.get("summary", {})
        logger.info(
            f"Sweep completed: checked={summary.get('alertsChecked', 0)} "
            f"changes={summary.get('changesDetected', 0)} errors={summary.get('errors', 0)}"
        )
        if summary.get("changesDetected") or summary.get("errors"):
            for index, detail in enumerate(data.get("details", []), start=1):
                label = detail.get("title") or detail.get("alertId")
                if detail.get("error"):
                    logger.warning(f"  {index}. {label}: error: {detail['error']}")
                elif detail.get("changeDetected"):
                    logger.info(f"  {index}. {label}: change detected")

    def start(self):
        if self._running:
            return
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.trigger,
            trigger=IntervalTrigger(seconds=self.config.sweep_interval_seconds),
            id="trigger_sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now() + timedelta(seconds=INITIAL_DELAY_SECONDS),
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Worker started (target={self.endpoint}, every {self.config.sweep_interval_seconds}s)")

    def stop(self):
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Worker stopped")
