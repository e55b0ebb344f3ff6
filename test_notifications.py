import pytest
from twilio.base.exceptions import TwilioException, TwilioRestException

from models import Medicine, User
from notifications import (
    DeliveryFailure,
    NoContactChannel,
    NotificationDispatcher,
    TwilioTransport,
    UnconfiguredTransport,
    build_transport,
    compose_message,
)


class RecordingTransport:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def send_message(self, body, from_, to):
        self.calls.append((body, from_, to))
        if self.error:
            raise self.error
        return 'SM123'


class FakeMessages:
    def __init__(self):
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        return type('Message', (), {'sid': 'SM456'})()


class FakeClient:
    def __init__(self):
        self.messages = FakeMessages()


def medicine(**kwargs):
    kwargs.setdefault('name', 'Amoxicillin')
    kwargs.setdefault('dose', '250mg')
    kwargs.setdefault('time', '08:00')
    kwargs.setdefault('stock', 5)
    med = Medicine(**kwargs)
    med.id = 7
    return med


def user(**kwargs):
    kwargs.setdefault('email', 'ravi@example.com')
    kwargs.setdefault('phone_number', '+919800000002')
    return User(**kwargs)


def test_compose_message():
    assert compose_message(medicine(), user(name='Ravi')) == (
        "💊 Hello Ravi, it's time to take your medicine!\n"
        "Reminder: Amoxicillin\n"
        "Dose: 250mg\n"
        "Stock Remaining: 4"
    )


def test_compose_message_without_name():
    assert compose_message(medicine(), user(name=None)).startswith("💊 Hello User,")


def test_send_returns_receipt():
    transport = RecordingTransport()
    receipt = NotificationDispatcher(transport, '+15550000000').send(medicine(), user(phone_number=' +919800000002 '))

    assert receipt.medicine_id == 7
    assert receipt.to == '+919800000002'
    assert receipt.message_id == 'SM123'
    body, from_, to = transport.calls[0]
    assert from_ == '+15550000000'
    assert to == '+919800000002'
    assert 'Reminder: Amoxicillin' in body


@pytest.mark.parametrize('phone', [None, '', '   '])
def test_no_phone_never_reaches_transport(phone):
    transport = RecordingTransport()
    with pytest.raises(NoContactChannel):
        NotificationDispatcher(transport, '+15550000000').send(medicine(), user(phone_number=phone))
    assert transport.calls == []


def test_rest_error_becomes_delivery_failure():
    error = TwilioRestException(400, '/Messages.json', msg='Invalid To number', code=21211)
    dispatcher = NotificationDispatcher(RecordingTransport(error=error), '+15550000000')

    with pytest.raises(DeliveryFailure) as excinfo:
        dispatcher.send(medicine(), user())

    assert excinfo.value.detail == 'Invalid To number'
    assert excinfo.value.status == 400
    assert excinfo.value.code == 21211


def test_generic_twilio_error_becomes_delivery_failure():
    dispatcher = NotificationDispatcher(RecordingTransport(error=TwilioException('boom')), '+15550000000')
    with pytest.raises(DeliveryFailure) as excinfo:
        dispatcher.send(medicine(), user())
    assert excinfo.value.detail == 'boom'


def test_unconfigured_transport_fails_delivery():
    dispatcher = NotificationDispatcher(UnconfiguredTransport(), None)
    with pytest.raises(DeliveryFailure, match='not configured'):
        dispatcher.send(medicine(), user())


def test_twilio_transport_uses_messages_api():
    client = FakeClient()
    transport = TwilioTransport('AC123', 'token', client=client)

    assert transport.send_message('hi', from_='+15550000000', to='+15551112222') == 'SM456'
    assert client.messages.kwargs == {'body': 'hi', 'from_': '+15550000000', 'to': '+15551112222'}


def test_build_transport():
    assert isinstance(build_transport({}), UnconfiguredTransport)
    assert isinstance(build_transport({'TWILIO_ACCOUNT_SID': 'AC123'}), UnconfiguredTransport)
    assert isinstance(
        build_transport({'TWILIO_ACCOUNT_SID': 'AC123', 'TWILIO_AUTH_TOKEN': 'secret'}),
        TwilioTransport,
    )
