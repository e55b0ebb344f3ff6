import logging

from sqlalchemy import and_, or_, text, update

from models import db, Medicine, User

logger = logging.getLogger(__name__)


def _not_reminded_since(start):
    return or_(Medicine.last_reminded_at.is_(None), Medicine.last_reminded_at < start)


class MedicineStore:
    """Storage operations the reminder engine depends on.

    Must be used inside a Flask application context. Timestamps are naive UTC.
    """

    def __init__(self, database=db):
        self.db = database

    def query_due_medicines(self, time, day, not_reminded_since):
        """Return (Medicine, User) pairs due at ``time`` on ``day``."""
        recurrence_matches = or_(
            Medicine.recurrence == 'daily',
            and_(
                Medicine.recurrence == 'specific',
                Medicine.days.contains(day),
            ),
        )
        query = (
            self.db.session.query(Medicine, User)
            .join(User, Medicine.user_id == User.id)
            .filter(
                Medicine.time == time,
                recurrence_matches,
                _not_reminded_since(not_reminded_since),
                Medicine.stock > 0,
            )
            .order_by(Medicine.id)
        )
        return [(medicine, user) for medicine, user in query.all()]

    def conditional_decrement_stock(self, medicine_id, reminded_at, not_reminded_since):
        """Decrement stock and stamp ``reminded_at`` in one conditional UPDATE.

        Returns the refreshed Medicine, or None when no row matched.
        """
        stmt = (
            update(Medicine)
            .where(
                Medicine.id == medicine_id,
                Medicine.stock > 0,
                _not_reminded_since(not_reminded_since),
            )
            .values(stock=Medicine.stock - 1, last_reminded_at=reminded_at)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.session.execute(stmt)
            self.db.session.commit()
        except Exception:
            self.db.session.rollback()
            raise

        if result.rowcount == 0:
            logger.debug(f"Conditional decrement matched no row for medicine {medicine_id}")
            return None
        return self.db.session.get(Medicine, medicine_id)

    def ping(self):
        self.db.session.execute(text('SELECT 1'))
        return True
