import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.core.clock import system_clock
from app.core.exceptions import DuplicateScheduleError, TransientSendError
from app.core.phone import normalize_phone
from app.models.follow_up import ProviderReminder, ReminderStatus
from app.models.unlock import UnlockStatus
from app.services.unlock_store import UnlockStore, guarded_update, insert_unique

logger = logging.getLogger(__name__)

PROVIDER_REMINDER_DELAY_MINUTES = 15
BATCH_SIZE = 10

# Unlock states where a nudge would be pointless
NO_NUDGE_STATES = (
    UnlockStatus.PAID,
    UnlockStatus.REVEALED,
    UnlockStatus.EXPIRED,
    UnlockStatus.DECLINED,
)

NUDGE_TEXT = (
    "Reminder: A customer is awaiting your contact. "
    "Don't miss this opportunity, unlock their details now!"
)


class ProviderNudgeEngine:
    """Nudges a provider who got a teaser but has not unlocked within 15 minutes."""

    def __init__(self, db: Session, sms, clock=system_clock):
        self.db = db
        self.sms = sms
        self.clock = clock

    def _open_reminder(self, lead_id, provider_id):
        return self.db.query(ProviderReminder).filter(
            ProviderReminder.lead_id == lead_id,
            ProviderReminder.provider_id == provider_id,
            ProviderReminder.status == ReminderStatus.SCHEDULED.value,
        ).first()

    def schedule_reminder(self, lead_id, provider_id, provider_phone: str):
        provider_phone = normalize_phone(provider_phone)
        if not provider_phone:
            logger.info("📞 Nudge: No provider phone, skipping reminder")
            return None

        existing = self._open_reminder(lead_id, provider_id)
        if existing:
            logger.info(f"📞 Nudge: Reminder already scheduled for lead {lead_id} / provider {provider_id}")
            return existing

        now = self.clock.now()
        reminder = ProviderReminder(
            lead_id=lead_id,
            provider_id=provider_id,
            provider_phone=provider_phone,
            status=ReminderStatus.SCHEDULED.value,
            send_after=now + timedelta(minutes=PROVIDER_REMINDER_DELAY_MINUTES),
            created_at=now,
            updated_at=now,
        )
        try:
            insert_unique(self.db, reminder)
        except DuplicateScheduleError:
            # Lost the race on the one-open-reminder-per-pair index
            return self._open_reminder(lead_id, provider_id)

        logger.info(f"📞 Nudge: Reminder for {provider_phone} at {reminder.send_after.isoformat()} (lead {lead_id})")
        return reminder

    def process_due(self) -> int:
        now = self.clock.now()
        due = self.db.query(ProviderReminder).filter(
            ProviderReminder.status == ReminderStatus.SCHEDULED.value,
            ProviderReminder.send_after <= now,
        ).order_by(ProviderReminder.send_after.asc()).limit(BATCH_SIZE).all()

        if not due:
            return 0

        logger.info(f"📞 Nudge: Processing {len(due)} provider reminders")
        sent = 0
        store = UnlockStore(self.db, self.clock)

        for reminder in due:
            try:
                unlock = store.get(reminder.lead_id, reminder.provider_id)

                if unlock is None or unlock.status in NO_NUDGE_STATES:
                    guarded_update(
                        self.db, ProviderReminder, reminder, [ReminderStatus.SCHEDULED], ReminderStatus.COMPLETED,
                        updated_at=now,
                    )
                    logger.info(f"📞 Nudge: Lead {reminder.lead_id} no longer needs a reminder, cancelled")
                    continue

                self.sms.send_sms(reminder.provider_phone, NUDGE_TEXT)
                guarded_update(
                    self.db, ProviderReminder, reminder, [ReminderStatus.SCHEDULED], ReminderStatus.SENT,
                    sent_at=now, updated_at=now,
                )
                sent += 1
                logger.info(f"📞 Nudge: Sent reminder to {reminder.provider_phone} for lead {reminder.lead_id}")

            except TransientSendError as e:
                logger.error(f"📞 Nudge: Send failed for reminder #{reminder.id}, retrying next tick: {e}")
            except Exception as e:
                logger.error(f"📞 Nudge: Error processing reminder #{reminder.id}: {e}")
                self.db.rollback()

        return sent
