"""
Notification dispatcher
Fans booking events out to push, SMS and email, honouring per-user opt-outs and quiet hours.
Delivery problems are logged and reported, never raised to the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..domain.bookings.clock import Clock
from ..domain.bookings.enums import Channel
from ..domain.bookings.events import NotificationEvent, Recipient
from . import notification_templates as templates
from .gateway import NotificationGateway

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("tolkbooking.audit")


@dataclass
class DispatchReport:
    kind: str
    channel: str
    job_id: int
    message: Optional[str] = None
    sent: list = field(default_factory=list)
    deferred: list = field(default_factory=list)
    deferred_until: Optional[datetime] = None
    skipped: dict = field(default_factory=dict)
    failed: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class NotificationDispatcher:
    """Resolves texts for an event and hands them to the gateway"""

    def __init__(self, gateway: NotificationGateway, clock: Clock, log: Optional[logging.Logger] = None):
        self.gateway = gateway
        self.clock = clock
        self.logger = log or logger

    async def notify_all(self, events: Iterable[NotificationEvent]) -> list[DispatchReport]:
        return [await self.notify(event) for event in events]

    async def notify(self, event: NotificationEvent) -> DispatchReport:
        report = DispatchReport(kind=event.kind.value, channel=event.channel.value, job_id=event.job_id)
        try:
            if event.channel == Channel.PUSH:
                await self._push(event, report)
            elif event.channel == Channel.SMS:
                await self._sms(event, report)
            else:
                await self._email(event, report)
        except Exception as e:
            # Text resolution or an unexpected gateway fault; the transition already happened
            self.logger.error(f"❌ Failed to dispatch {event.kind.value} for job {event.job_id}: {e}")
            report.failed = [r.user_id for r in event.recipients if r.user_id not in report.sent]

        audit_logger.info(
            f"dispatch {report.kind}/{report.channel} job={report.job_id} "
            f"recipients={[r.user_id for r in event.recipients]} sent={report.sent} "
            f"deferred={report.deferred} skipped={report.skipped} failed={report.failed} "
            f"message={report.message!r}"
        )
        return report

    def partition(self, event: NotificationEvent, now: datetime) -> tuple[list, list, dict]:
        """Split push recipients into (immediate, deferred, skipped-with-reason)"""
        night = self.clock.is_night_time(now)
        immediate, deferred, skipped = [], [], {}
        for recipient in event.recipients:
            if recipient.not_get_notification:
                skipped[recipient.user_id] = "push_opt_out"
            elif event.urgent and recipient.not_get_emergency:
                skipped[recipient.user_id] = "emergency_opt_out"
            elif night and recipient.not_get_nighttime:
                deferred.append(recipient)
            else:
                immediate.append(recipient)
        return immediate, deferred, skipped

    async def _push(self, event: NotificationEvent, report: DispatchReport):
        message = templates.render_push(event.kind, event.variant, event.locale, event.payload)
        report.message = message
        now = self.clock.now()
        immediate, deferred, report.skipped = self.partition(event, now)
        data = dict(event.payload, notification_type=event.kind.value)

        if immediate:
            self.logger.info(f"🔔 Push {event.kind.value} for job {event.job_id} to {len(immediate)} user(s)")
            await self._deliver(self.gateway.send_push(immediate, message, data), immediate, report.sent, report)

        if deferred:
            report.deferred_until = self.clock.next_business_time(now)
            self.logger.info(
                f"🌙 Push {event.kind.value} for job {event.job_id} deferred to "
                f"{report.deferred_until} for {len(deferred)} user(s)"
            )
            await self._deliver(
                self.gateway.send_push(deferred, message, data, report.deferred_until),
                deferred,
                report.deferred,
                report,
            )

    async def _sms(self, event: NotificationEvent, report: DispatchReport):
        message = templates.render_sms(event.kind, event.variant, event.locale, event.payload)
        report.message = message
        for recipient in event.recipients:
            if not recipient.mobile:
                report.skipped[recipient.user_id] = "no_mobile"
                continue
            await self._deliver(self.gateway.send_sms(recipient.mobile, message), [recipient], report.sent, report)

    async def _email(self, event: NotificationEvent, report: DispatchReport):
        template, subject = templates.email_message(event.kind, event.variant, event.payload)
        report.message = subject
        for recipient in event.recipients:
            if not recipient.email:
                report.skipped[recipient.user_id] = "no_email"
                continue
            data = dict(event.payload, user=recipient.as_dict())
            self.logger.info(f"📧 Sending {template} for job {event.job_id} to {recipient.email}")
            await self._deliver(
                self.gateway.send_email(recipient.email, recipient.name, subject, template, data),
                [recipient],
                report.sent,
                report,
            )

    async def _deliver(self, call, recipients: list[Recipient], bucket: list, report: DispatchReport):
        try:
            accepted = await call
        except Exception as e:
            self.logger.error(f"❌ Gateway error for job {report.job_id} ({report.kind}/{report.channel}): {e}")
            accepted = False
        ids = [r.user_id for r in recipients]
        if accepted:
            bucket.extend(ids)
        else:
            report.failed.extend(ids)
