import itertools
from datetime import datetime, timezone

import pytest

from app import create_app
from models import db as _db, User, Medicine

SENDER = '+15550000000'

# 2024-01-01 is a Monday; 02:30 UTC is 08:00 in Asia/Kolkata
MONDAY_0800 = datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc)
TUESDAY_0800 = datetime(2024, 1, 2, 2, 30, tzinfo=timezone.utc)


class FakeTransport:
    """Records messages instead of calling Twilio."""

    def __init__(self):
        self.sent = []
        self.failures = {}
        self.on_send = None

    def send_message(self, body, from_, to):
        if to in self.failures:
            raise self.failures[to]
        if self.on_send:
            self.on_send(body, from_, to)
        self.sent.append({'body': body, 'from_': from_, 'to': to})
        return f'SM{len(self.sent):032d}'


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def app(tmp_path, transport):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{tmp_path / "test.db"}',
        'TWILIO_PHONE_NUMBER': SENDER,
        'REMINDER_TIMEZONE': 'Asia/Kolkata',
    }, transport=transport)

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def orchestrator(app):
    return app.extensions['reminders']


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(**kwargs):
        n = next(counter)
        kwargs.setdefault('email', f'user{n}@example.com')
        kwargs.setdefault('name', f'User {n}')
        kwargs.setdefault('phone_number', f'+1555000{n:04d}')
        user = User(**kwargs)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_medicine(db, make_user):
    def _make(user=None, **kwargs):
        user = user or make_user()
        kwargs.setdefault('name', 'Paracetamol')
        kwargs.setdefault('dose', '500mg')
        kwargs.setdefault('time', '08:00')
        kwargs.setdefault('recurrence', 'daily')
        kwargs.setdefault('stock', 3)
        medicine = Medicine(user_id=user.id, **kwargs)
        db.session.add(medicine)
        db.session.commit()
        return medicine

    return _make
