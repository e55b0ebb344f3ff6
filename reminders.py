"""Due-reminder matching and at-most-once-per-day delivery.

Once per minute the orchestrator resolves which medicines are due in the
reference timezone, sends an SMS for each, and on success decrements the
medicine's stock with a single conditional UPDATE. Failures are contained per
medicine and per tick.
"""
import logging
from collections import namedtuple
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from models import has_phone_number
from notifications import DeliveryFailure, NoContactChannel, ReminderError

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = 'medicine_reminder_tick'
DEFAULT_TIMEZONE = 'Asia/Kolkata'

DueReminder = namedtuple('DueReminder', ['medicine', 'user'])

# Plain copies of the due rows; a commit later in the tick must not reload them
DueMedicine = namedtuple('DueMedicine', ['id', 'name', 'dose', 'stock'])


class Recipient(namedtuple('Recipient', ['id', 'email', 'name', 'phone_number'])):
    __slots__ = ()

    @property
    def has_contact_channel(self):
        return has_phone_number(self.phone_number)


class ResolutionFailure(ReminderError):
    """The due set could not be read from storage."""


class TickReport:
    def __init__(self, started_at):
        self.started_at = started_at
        self.resolved = True
        self.due = 0
        self.sent = 0
        self.skipped = 0
        self.failed = 0
        self.stale = 0

    def __repr__(self):
        return (
            f'<TickReport due={self.due} sent={self.sent} skipped={self.skipped} '
            f'failed={self.failed} stale={self.stale} resolved={self.resolved}>'
        )


def utc_now():
    return datetime.now(timezone.utc)


def to_storage(moment):
    """Aware datetime -> naive UTC, the representation stored in the database."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def reference_moment(now, tz):
    """Return (current "HH:MM", weekday abbreviation, start of today as naive UTC)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    current_time = local.strftime('%H:%M')
    current_day = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')[local.weekday()]
    start_of_today = datetime.combine(local.date(), time.min, tzinfo=tz)
    return current_time, current_day, to_storage(start_of_today)


def load_timezone(name):
    return ZoneInfo(name or DEFAULT_TIMEZONE)


class DueSetResolver:
    def __init__(self, store, tz):
        self.store = store
        self.tz = tz

    def find_due(self, now):
        current_time, current_day, start_of_today = reference_moment(now, self.tz)
        try:
            rows = self.store.query_due_medicines(current_time, current_day, start_of_today)
        except SQLAlchemyError as e:
            raise ResolutionFailure(f"Due medicine query failed: {e}") from e
        due = {}
        for medicine, user in rows:
            if medicine.id in due:
                continue
            due[medicine.id] = DueReminder(
                DueMedicine(medicine.id, medicine.name, medicine.dose, medicine.stock),
                Recipient(user.id, user.email, user.name, user.phone_number),
            )
        return list(due.values())


class StockMutator:
    def __init__(self, store, tz):
        self.store = store
        self.tz = tz

    def mark_delivered(self, medicine_id, now):
        """Decrement stock and stamp the reminder time; None if nothing matched."""
        _, _, start_of_today = reference_moment(now, self.tz)
        return self.store.conditional_decrement_stock(
            medicine_id, to_storage(now), start_of_today
        )


class ReminderOrchestrator:
    """Runs one reminder tick per minute against its store and dispatcher."""

    def __init__(self, app, store, dispatcher, tz, clock=utc_now, max_instances=1):
        self.app = app
        self.tz = tz
        self.clock = clock
        self.dispatcher = dispatcher
        self.resolver = DueSetResolver(store, tz)
        self.mutator = StockMutator(store, tz)
        self.max_instances = max_instances
        self.scheduler = None

    def run_tick(self, now=None):
        now = now or self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        report = TickReport(now)
        with self.app.app_context():
            logger.info(f"⏰ Running reminder check at {now.astimezone(self.tz):%H:%M %a} ({self.tz.key})")
            try:
                due = self.resolver.find_due(now)
            except ResolutionFailure as e:
                logger.error(f"❌ Error during reminder check: {e}")
                report.resolved = False
                return report

            report.due = len(due)
            logger.info(f"🩺 Found {report.due} reminders due.")

            for medicine, user in due:
                self._process(medicine, user, now, report)

        logger.info(f"Reminder check finished: {report!r}")
        return report

    def _process(self, medicine, user, now, report):
        try:
            receipt = self.dispatcher.send(medicine, user)
        except NoContactChannel:
            logger.info(f"Skipping reminder for {medicine.name}: no phone number")
            report.skipped += 1
            return
        except DeliveryFailure as e:
            logger.error(f"❌ Missed reminder for {medicine.name} (medicine {medicine.id}): {e.detail}")
            report.failed += 1
            return
        except Exception:
            logger.exception(f"Unexpected error sending reminder for medicine {medicine.id}")
            report.failed += 1
            return

        try:
            updated = self.mutator.mark_delivered(receipt.medicine_id, now)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update stock for medicine {medicine.id}: {e}")
            report.failed += 1
            return

        report.sent += 1
        if updated is None:
            logger.info(f"Stock for medicine {medicine.id} already updated or removed, nothing to do")
            report.stale += 1
        else:
            logger.info(f"🧾 Stock updated for {updated.name}: {updated.stock} left")

    def start(self, scheduler):
        """Register the per-minute job on a Flask-APScheduler instance and start it."""
        scheduler.init_app(self.app)
        scheduler.add_job(
            id=REMINDER_JOB_ID,
            func=self.run_tick,
            trigger='cron',
            second=0,
            coalesce=True,
            max_instances=self.max_instances,
            replace_existing=True,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info("✅ Reminder scheduler started")

    def stop(self):
        if self.scheduler is None:
            return
        if self.scheduler.get_job(REMINDER_JOB_ID):
            self.scheduler.remove_job(REMINDER_JOB_ID)
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("Reminder scheduler stopped")

    @property
    def running(self):
        return self.scheduler is not None and self.scheduler.running
