import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.core.clock import system_clock
from app.core.config import settings
from app.services.follow_ups.client_follow_up import ClientFollowUpEngine
from app.services.follow_ups.provider_contact_checkin import ProviderContactCheckinEngine
from app.services.follow_ups.provider_nudge import ProviderNudgeEngine
from app.services.lead_dispatcher import LeadDispatcher
from app.services.unlock_service import UnlockStateMachine

logger = logging.getLogger(__name__)

JOB_ID = "followup_tick"


class SchedulerLoop:
    """
    One fixed-interval job that drives the sweeps and the follow-up engines.
    Each step gets its own session and its own error handling, so a failing
    step never stops the ones after it.
    """

    def __init__(self, session_factory, sms, clock=system_clock, interval_seconds: int = None):
        self.session_factory = session_factory
        self.sms = sms
        self.clock = clock
        self.interval_seconds = interval_seconds or settings.FOLLOWUP_TICK_SECONDS
        self.scheduler = BackgroundScheduler()

    # ---------------------------------------------------------
    # STEPS
    # ---------------------------------------------------------
    def _expire_unlocks(self, db):
        return UnlockStateMachine(db, self.sms, clock=self.clock).expire_stale()

    def _provider_nudges(self, db):
        return ProviderNudgeEngine(db, self.sms, self.clock).process_due()

    def _client_follow_ups(self, db):
        return self._client_engine(db).process_due()

    def _client_stale_sweep(self, db):
        return self._client_engine(db).expire_stale()

    def _provider_checkins(self, db):
        return ProviderContactCheckinEngine(db, self.sms, self.clock).process_due()

    def _client_engine(self, db):
        dispatcher = LeadDispatcher(db, UnlockStateMachine(db, self.sms, clock=self.clock))
        return ClientFollowUpEngine(db, self.sms, self.clock, dispatcher=dispatcher)

    def steps(self):
        return [
            ("unlock_ttl_sweep", self._expire_unlocks),
            ("provider_nudges", self._provider_nudges),
            ("client_follow_ups", self._client_follow_ups),
            ("client_stale_sweep", self._client_stale_sweep),
            ("provider_contact_checkins", self._provider_checkins),
        ]

    def tick(self) -> dict:
        results = {}
        for name, step in self.steps():
            db = self.session_factory()
            try:
                results[name] = step(db)
            except Exception as e:
                logger.error(f"❌ Scheduler Error ({name}): {str(e)}")
                db.rollback()
                results[name] = None
            finally:
                db.close()
        return results

    # ---------------------------------------------------------
    # LIFECYCLE
    # ---------------------------------------------------------
    def start(self):
        if self.scheduler.running:
            return

        self.scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"🚀 Follow-up scheduler started (every {self.interval_seconds}s)")

    def stop(self):
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        logger.info("🛑 Follow-up scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
