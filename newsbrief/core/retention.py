import asyncio

from newsbrief.observability.logger import get_logger
from newsbrief.storage.briefings import BriefingRepository
from newsbrief.usage.ledger import now_ms

log = get_logger("retention")


class RetentionSweeper:
    """Deletes briefings (and their audio) past the retention period."""

    def __init__(self, briefings: BriefingRepository, retention_days: int = 30,
                 interval_seconds: int = 12 * 60 * 60, clock=now_ms):
        self.briefings = briefings
        self.retention_days = retention_days
        self.interval = interval_seconds
        self.clock = clock

    async def sweep(self) -> int:
        return await self.briefings.cleanup_expired(self.retention_days, self.clock())

    async def run(self):
        """Sweep once now, then every ``interval`` seconds until cancelled."""
        log.info("retention_started", retention_days=self.retention_days, interval=self.interval)
        while True:
            try:
                await self.sweep()
            except Exception as e:
                log.error("retention_sweep_failed", error=str(e))
            await asyncio.sleep(self.interval)
