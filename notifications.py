import logging
from collections import namedtuple

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

logger = logging.getLogger(__name__)

DeliveryReceipt = namedtuple('DeliveryReceipt', ['medicine_id', 'to', 'message_id'])


class ReminderError(Exception):
    """Base class for reminder engine failures."""


class NoContactChannel(ReminderError):
    """The medicine's owner has no phone number; the reminder is skipped."""


class DeliveryFailure(ReminderError):
    def __init__(self, detail, status=None, code=None):
        super().__init__(detail)
        self.detail = detail
        self.status = status
        self.code = code


class TwilioTransport:
    """Sends SMS through the Twilio REST API."""

    def __init__(self, account_sid, auth_token, client=None):
        self.client = client or Client(account_sid, auth_token)

    def send_message(self, body, from_, to):
        message = self.client.messages.create(body=body, from_=from_, to=to)
        return message.sid


class UnconfiguredTransport:
    def send_message(self, body, from_, to):
        raise DeliveryFailure("SMS transport not configured")


def build_transport(config):
    """Return a Twilio transport when credentials are present."""
    sid = config.get('TWILIO_ACCOUNT_SID')
    token = config.get('TWILIO_AUTH_TOKEN')
    if not (sid and token):
        logger.warning("⚠️  Twilio credentials missing, SMS reminders disabled")
        return UnconfiguredTransport()
    return TwilioTransport(sid, token)


def compose_message(medicine, user):
    return (
        f"💊 Hello {user.name or 'User'}, it's time to take your medicine!\n"
        f"Reminder: {medicine.name}\n"
        f"Dose: {medicine.dose}\n"
        f"Stock Remaining: {medicine.stock - 1}"
    )


class NotificationDispatcher:
    def __init__(self, transport, sender):
        self.transport = transport
        self.sender = sender

    def send(self, medicine, user):
        """Deliver the reminder for ``medicine`` to ``user``.

        Raises NoContactChannel when the user has no phone number and
        DeliveryFailure when the transport rejects the message.
        """
        if not user.has_contact_channel:
            raise NoContactChannel(f"User {user.email} has no phone number")

        to = user.phone_number.strip()
        body = compose_message(medicine, user)
        try:
            message_id = self.transport.send_message(body, from_=self.sender, to=to)
        except TwilioRestException as e:
            raise DeliveryFailure(e.msg, status=e.status, code=e.code) from e
        except TwilioException as e:
            raise DeliveryFailure(str(e)) from e

        logger.info(f"📩 SMS sent to {to} for {medicine.name}, SID: {message_id}")
        return DeliveryReceipt(medicine.id, to, message_id)
