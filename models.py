import re
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import validates

db = SQLAlchemy()

WEEKDAYS = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')
WEEKDAY_NAMES = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
RECURRENCES = ('daily', 'specific')
ROLES = ('user', 'admin')

_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})$')


def normalize_time(value):
    """Return a zero-padded 24h "HH:MM" string or raise ValueError."""
    match = _TIME_RE.match((value or '').strip())
    if not match:
        raise ValueError(f"Invalid reminder time {value!r}, expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid reminder time {value!r}, expected HH:MM")
    return f"{hour:02d}:{minute:02d}"


def normalize_day(value):
    """Accept "mon" or "Monday" style names only."""
    day = (value or '').strip().lower()
    if day in WEEKDAY_NAMES:
        return WEEKDAYS[WEEKDAY_NAMES.index(day)]
    if day not in WEEKDAYS:
        raise ValueError(f"Unknown weekday {value!r}")
    return day


def has_phone_number(value):
    return bool(value and value.strip())


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    # Owned by the auth layer, never read by the reminder engine
    password_hash = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(10), nullable=False, default='user')
    name = db.Column(db.String(100), nullable=True)
    phone_number = db.Column(db.String(32), nullable=True)
    age = db.Column(db.Integer, nullable=True)
    sex = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    medicines = db.relationship('Medicine', backref='owner', lazy=True, cascade='all, delete-orphan')

    @validates('role')
    def validate_role(self, key, value):
        if value not in ROLES:
            raise ValueError(f"Unknown role {value!r}")
        return value

    @property
    def has_contact_channel(self):
        return has_phone_number(self.phone_number)

    def __repr__(self):
        return f'<User {self.email}>'


class Medicine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    dose = db.Column(db.String(100), nullable=False)
    time = db.Column(db.String(5), nullable=False, index=True)
    recurrence = db.Column(db.String(10), nullable=False, default='daily')
    # Comma separated weekday abbreviations, e.g. "mon,wed"
    days = db.Column(db.String(27), nullable=False, default='')
    stock = db.Column(db.Integer, nullable=False, default=0)
    last_reminded_at = db.Column(db.DateTime, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @validates('time')
    def validate_time(self, key, value):
        return normalize_time(value)

    @validates('recurrence')
    def validate_recurrence(self, key, value):
        value = (value or '').strip().lower()
        if value not in RECURRENCES:
            raise ValueError(f"Unknown recurrence {value!r}")
        return value

    @validates('days')
    def validate_days(self, key, value):
        if isinstance(value, str):
            value = [part for part in value.split(',') if part.strip()]
        days = {normalize_day(day) for day in value or []}
        return ','.join(day for day in WEEKDAYS if day in days)

    @validates('stock')
    def validate_stock(self, key, value):
        if value is None or int(value) < 0:
            raise ValueError("Stock must be a non-negative integer")
        return int(value)

    @property
    def day_list(self):
        return [day for day in (self.days or '').split(',') if day]

    def __repr__(self):
        return f'<Medicine {self.name} @ {self.time}>'
