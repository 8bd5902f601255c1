"""
Messaging gateway
Push via OneSignal, SMS via Twilio, email via Resend. Every outbound call is bounded
by GATEWAY_TIMEOUT_SECONDS. Methods return True when the provider accepted the message.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import httpx
import resend
from mjml import mjml_to_html

from .. import config
from ..domain.bookings.errors import TransportError
from ..shared.validators import validate_se_phone
from .notification_templates import email_template

logger = logging.getLogger(__name__)

SEND_AFTER_FORMAT = "%Y-%m-%d %H:%M:%S"


class NotificationGateway(ABC):
    """Outbound messaging port"""

    @abstractmethod
    async def send_push(
        self, recipients: list, message: str, data: dict, defer_until: Optional[datetime] = None
    ) -> bool: ...

    @abstractmethod
    async def send_sms(self, number: str, text: str) -> bool: ...

    @abstractmethod
    async def send_email(self, address: str, name: str, subject: str, template: str, data: dict) -> bool: ...


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise TransportError(f"Failed to compile MJML template: {str(e)}") from e


class ProviderGateway(NotificationGateway):
    """OneSignal, Twilio and Resend behind one gateway"""

    def __init__(
        self,
        timeout: float = config.GATEWAY_TIMEOUT_SECONDS,
        log: Optional[logging.Logger] = None,
    ):
        self.timeout = timeout
        self.logger = log or logger
        resend.api_key = config.RESEND_API_KEY

    async def send_push(
        self, recipients: list, message: str, data: dict, defer_until: Optional[datetime] = None
    ) -> bool:
        if not recipients:
            return False
        if not config.ONESIGNAL_APP_ID or not config.ONESIGNAL_API_KEY:
            self.logger.debug("No OneSignal configuration, push skipped")
            return False

        # Users are addressed by their email tag, OR-ed together
        tags = []
        for recipient in recipients:
            if tags:
                tags.append({"operator": "OR"})
            tags.append({"key": "email", "relation": "=", "value": recipient.email})

        immediate = data.get("immediate") == "yes"
        sound = "emergency_booking" if immediate or data.get("notification_type") != "job_created" else "normal_booking"
        fields = {
            "app_id": config.ONESIGNAL_APP_ID,
            "tags": tags,
            "data": data,
            "headings": {"en": config.PUSH_TITLE},
            "contents": {"en": message},
            "ios_badgeType": "Increase",
            "ios_badgeCount": 1,
            "android_sound": sound,
            "ios_sound": f"{sound}.mp3",
        }
        if defer_until:
            fields["send_after"] = defer_until.strftime(SEND_AFTER_FORMAT)

        try:
            self.logger.info(f"🔔 Sending push to {len(recipients)} recipient(s)")
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    config.ONESIGNAL_API_URL,
                    json=fields,
                    headers={"Authorization": f"Basic {config.ONESIGNAL_API_KEY}"},
                )
            if response.status_code in [200, 201]:
                self.logger.info(f"✅ Push accepted by OneSignal: {response.json().get('id')}")
                return True
            self.logger.error(f"❌ OneSignal API error [{response.status_code}]: {response.text}")
            return False
        except httpx.HTTPError as e:
            raise TransportError(f"OneSignal request failed: {e}") from e

    async def send_sms(self, number: str, text: str) -> bool:
        if not config.TWILIO_ACCOUNT_SID or not config.TWILIO_AUTH_TOKEN:
            self.logger.debug("No Twilio configuration, SMS skipped")
            return False
        try:
            to_phone = validate_se_phone(number)
        except ValueError:
            self.logger.warning(f"⚠️ Invalid phone number format: {number}")
            return False

        sid = config.TWILIO_ACCOUNT_SID
        try:
            self.logger.info(f"📱 Sending SMS to Twilio API for {to_phone}")
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json",
                    auth=(sid, config.TWILIO_AUTH_TOKEN),
                    data={"To": to_phone, "From": config.SMS_NUMBER, "Body": text},
                )
            if response.status_code in [200, 201]:
                self.logger.info(f"✅ SMS sent to {to_phone} (SID: {response.json().get('sid')})")
                return True
            error_data = response.json()
            self.logger.error(f"❌ Twilio API error [{error_data.get('code')}]: {error_data.get('message')}")
            return False
        except httpx.HTTPError as e:
            raise TransportError(f"Twilio request failed: {e}") from e

    async def send_email(self, address: str, name: str, subject: str, template: str, data: dict) -> bool:
        if not config.RESEND_API_KEY:
            self.logger.error("❌ No email service configured - RESEND_API_KEY missing")
            return False

        html_content = compile_mjml_to_html(email_template(template, subject, name, data))
        email_data = {
            "from": config.EMAIL_FROM_ADDRESS,
            "to": [address],
            "subject": subject,
            "html": html_content,
        }
        try:
            self.logger.info(f"📧 Sending email via Resend to: {address}")
            response = await asyncio.wait_for(
                asyncio.to_thread(resend.Emails.send, email_data), timeout=self.timeout
            )
            self.logger.info(f"✅ Email sent successfully via Resend: {response}")
            return True
        except Exception as e:
            raise TransportError(f"Failed to send email to {address}: {e}") from e
