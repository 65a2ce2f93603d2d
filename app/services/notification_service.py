# app/services/notification_service.py
"""
Outbound notifications for complaints (email/SMS gateway boundary).

The gateway is reached through an HTTP webhook. Every failure is logged and
swallowed here: a notification never undoes a committed complaint change,
and it can be sent again later with the same call.
"""
import logging
from typing import Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notify_webhook_url
        self.timeout = timeout if timeout is not None else settings.notify_timeout

    def _post(self, payload: dict) -> bool:
        if not self.webhook_url:
            logger.info("Notification webhook not configured. Skipped '%s' for %s", payload["event"], payload["complaint_code"])
            return False
        try:
            response = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Notification '%s' for %s rejected: %s", payload["event"], payload["complaint_code"], e)
            return False
        except httpx.RequestError as e:
            logger.error("Connection error sending '%s' for %s: %s", payload["event"], payload["complaint_code"], e)
            return False
        logger.info("Notification '%s' sent for %s", payload["event"], payload["complaint_code"])
        return True

    def send_closure_otp(
        self,
        complaint_code: str,
        recipient_email: Optional[str],
        otp: str,
        recipient_phone: Optional[str] = None,
    ) -> bool:
        """Send the verification code of a closed complaint to its customer."""
        if not recipient_email and not recipient_phone:
            logger.warning("Complaint %s has no contact data, OTP not delivered", complaint_code)
            return False
        return self._post(
            {
                "event": "complaint_closed",
                "complaint_code": complaint_code,
                "email": recipient_email,
                "phone": recipient_phone,
                "subject": f"Complaint {complaint_code} resolved",
                "text": f"Your complaint {complaint_code} has been resolved. "
                        f"Share this code with the engineer to confirm: {otp}",
            }
        )
