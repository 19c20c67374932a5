"""
Reservation confirmation emails.

The bridge only needs ``send_reservation_confirmation`` returning True or False;
delivery is done by Resend over HTTP when RESEND_API_KEY is set, otherwise the
message is just logged.
"""

import html
import logging
import os
from datetime import date as date_type
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from restaurant_agent.config.constants import DEFAULT_RESTAURANT_NAME, LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

RESEND_API_KEY = os.getenv("RESEND_API_KEY")
NOTIFICATION_FROM_ADDRESS = os.getenv("NOTIFICATION_FROM_ADDRESS", "onboarding@resend.dev")
RESEND_EMAILS_URL = "https://api.resend.com/emails"

REQUEST_TIMEOUT = 10.0  # seconds


class NotificationError(Exception):
    """Raised when a confirmation email cannot be delivered."""


class ReservationConfirmation(BaseModel):
    """Display fields of a confirmed reservation."""

    name: str
    email: str
    date: str
    time: str
    guests: int
    restaurant_name: str = DEFAULT_RESTAURANT_NAME


def format_display_date(value: str) -> str:
    """Render YYYY-MM-DD as e.g. 'Saturday, March 1, 2025'; unparsable input is returned as is."""
    try:
        parsed = date_type.fromisoformat(value)
    except ValueError:
        return value
    return f"{parsed:%A}, {parsed:%B} {parsed.day}, {parsed.year}"


def build_confirmation_email(confirmation: ReservationConfirmation, from_address: str) -> Dict[str, Any]:
    """Build the Resend email payload for a confirmed reservation."""
    restaurant = confirmation.restaurant_name or DEFAULT_RESTAURANT_NAME
    guests_label = "person" if confirmation.guests == 1 else "people"
    body = (
        "<h1>Reservation Confirmed!</h1>"
        f"<p>Dear <strong>{html.escape(confirmation.name)}</strong>,</p>"
        f"<p>Your reservation at <strong>{html.escape(restaurant)}</strong> has been confirmed. "
        "We look forward to welcoming you!</p>"
        "<ul>"
        f"<li>Date: {html.escape(format_display_date(confirmation.date))}</li>"
        f"<li>Time: {html.escape(confirmation.time)}</li>"
        f"<li>Guests: {confirmation.guests} {guests_label}</li>"
        "</ul>"
        "<p>If you need to modify or cancel your reservation, please contact us directly.</p>"
    )
    return {
        "from": f"{restaurant} <{from_address}>",
        "to": [confirmation.email],
        "subject": f"Reservation Confirmation - {restaurant}",
        "html": body,
    }


class NotificationSender:
    """Base sender. Subclasses deliver the message in ``_deliver``."""

    async def send_reservation_confirmation(self, confirmation: ReservationConfirmation) -> bool:
        """
        Send a confirmation email.

        Returns:
            True if the message was accepted for delivery, False otherwise.
            Failures are logged and never raised.
        """
        try:
            await self._deliver(confirmation)
            logger.info(f"Reservation confirmation sent to {confirmation.email}")
            return True
        except NotificationError as e:
            logger.error(f"Failed to send reservation confirmation: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending reservation confirmation: {e}", exc_info=True)
            return False

    async def _deliver(self, confirmation: ReservationConfirmation) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class LoggingNotificationSender(NotificationSender):
    """Logs the email instead of sending it. Used when no email provider is configured."""

    async def _deliver(self, confirmation: ReservationConfirmation) -> None:
        message = build_confirmation_email(confirmation, NOTIFICATION_FROM_ADDRESS)
        logger.info(f"Email delivery not configured; would send '{message['subject']}' to {confirmation.email}")


class ResendNotificationSender(NotificationSender):
    """Sends confirmation emails through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        from_address: str = NOTIFICATION_FROM_ADDRESS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

    async def _deliver(self, confirmation: ReservationConfirmation) -> None:
        payload = build_confirmation_email(confirmation, self.from_address)
        try:
            response = await self.client.post(
                RESEND_EMAILS_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationError(
                f"Resend returned {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.RequestError as exc:
            raise NotificationError(f"Resend request failed: {exc}") from exc

        logger.debug(f"Resend accepted email: {response.text[:200]}")

    async def close(self) -> None:
        await self.client.aclose()


def create_notification_sender() -> NotificationSender:
    """Build the notification sender from the environment."""
    if RESEND_API_KEY:
        return ResendNotificationSender(RESEND_API_KEY)
    logger.warning("RESEND_API_KEY not set - confirmation emails will only be logged")
    return LoggingNotificationSender()
