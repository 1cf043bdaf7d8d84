"""
Notification Service for delivering customer updates via Twilio.

Delivery is best-effort: every failure is logged and swallowed here so a
notification can never hold up or fail a scheduling request.
"""
from typing import Iterable, Optional
import logging
from twilio.rest import Client
from twilio.base.exceptions import TwilioException

from salonqueue.core.config import settings
from salonqueue.services.notification_policy import OutboundMessage, Outbox

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Service for sending SMS / WhatsApp notifications via Twilio.
    """

    def __init__(self):
        """Initialize Twilio client with credentials from settings."""
        self.enabled = settings.twilio_enabled
        self.channel = settings.notification_channel
        self.client = None

        if self.enabled and settings.twilio_account_sid and settings.twilio_auth_token:
            try:
                self.client = Client(
                    settings.twilio_account_sid,
                    settings.twilio_auth_token,
                    timeout=settings.notification_timeout_seconds
                )
                logger.info("Twilio client initialized successfully")
            except Exception as e:
                logger.error(f"Failed to initialize Twilio client: {e}")
                self.enabled = False
        else:
            logger.warning("Twilio is disabled or credentials are missing, notifications will be logged only")
            self.enabled = False

    def format_phone_number(self, phone_number: str) -> str:
        """
        Format phone number to E.164 format for Twilio.

        Args:
            phone_number: Phone number in any format

        Returns:
            Formatted phone number in E.164 format (e.g., +919876543210)
        """
        if not phone_number:
            return ""

        digits = ''.join(filter(str.isdigit, phone_number))
        country = settings.default_country_code

        # Trunk prefix
        if digits.startswith('0'):
            digits = digits[1:]

        if phone_number.strip().startswith('+'):
            return f"+{digits}"
        if len(digits) == 10:
            return f"+{country}{digits}"
        if len(digits) == 10 + len(country) and digits.startswith(country):
            return f"+{digits}"
        return f"+{digits}"

    def _sender(self) -> Optional[str]:
        if self.channel == "whatsapp":
            return settings.twilio_whatsapp_number
        return settings.twilio_phone_number

    def send(self, to_phone: str, body: str) -> bool:
        """
        Send one message on the configured channel.

        Returns:
            True if Twilio accepted the message, False otherwise
        """
        formatted_to = self.format_phone_number(to_phone)
        if not formatted_to:
            logger.warning("[Notify] No phone number provided, message dropped")
            return False

        if not self.enabled or not self.client:
            logger.info(f"[MOCK {self.channel.upper()}] To: {formatted_to}, Message: {body}")
            return True

        to = f"whatsapp:{formatted_to}" if self.channel == "whatsapp" else formatted_to

        try:
            if settings.twilio_messaging_service_sid and self.channel == "sms":
                message = self.client.messages.create(
                    body=body,
                    messaging_service_sid=settings.twilio_messaging_service_sid,
                    to=to
                )
            else:
                sender = self._sender()
                if not sender:
                    logger.error("No sender number configured. Set TWILIO_PHONE_NUMBER or TWILIO_WHATSAPP_NUMBER")
                    return False
                message = self.client.messages.create(body=body, from_=sender, to=to)

            if message.status == 'failed' or message.error_code:
                logger.error(f"[Notify] Delivery failed to {formatted_to}. Status: {message.status}, "
                             f"Error Code: {message.error_code}, Error Message: {message.error_message}")
                return False

            logger.info(f"[Notify] Sent to {formatted_to}. SID: {message.sid}, Status: {message.status}")
            return True

        except TwilioException as e:
            logger.error(f"[Notify] Twilio error sending to {formatted_to}: {e}")
            return False
        except Exception as e:
            logger.error(f"[Notify] Unexpected error sending to {formatted_to}: {e}", exc_info=True)
            return False

    def deliver_all(self, messages: Iterable[OutboundMessage]) -> int:
        """
        Background task entry point. Sends each queued message once;
        failures are not retried.

        Returns:
            Number of messages accepted
        """
        sent = 0
        for message in messages:
            if self.send(message.recipient, message.body):
                sent += 1
            else:
                logger.warning(f"[Notify] '{message.kind}' not delivered "
                               f"(entry={message.entry_id}, appointment={message.appointment_id})")
        return sent


# Create a singleton instance
notification_service = NotificationService()


def schedule_delivery(background_tasks, outbox: Outbox) -> None:
    """Hand a request's outbox to FastAPI so sending happens after the response."""
    if len(outbox):
        background_tasks.add_task(notification_service.deliver_all, list(outbox.messages))
