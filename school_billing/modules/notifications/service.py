"""Invoice notification dispatch: in-app notices, push and WhatsApp."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.core.config import settings
from school_billing.core.exceptions import NotFoundError, ValidationError
from school_billing.modules.notices.models import Notice, NoticeAudience, NoticePriority, NoticeType
from school_billing.modules.notifications.channels import (
    HttpWhatsAppSender,
    PushSender,
    WhatsAppSender,
)
from school_billing.modules.notifications.schemas import (
    InvoiceNotification,
    NotificationError,
    NotificationResult,
)
from school_billing.modules.students.models import Student
from school_billing.shared.utils.money import format_money

logger = logging.getLogger(__name__)


class InvoiceNotifier(Protocol):
    """Anything able to tell students about new invoices."""

    async def notify(self, notifications: Sequence[InvoiceNotification]) -> NotificationResult: ...


class NullInvoiceNotifier:
    """Notifier that sends nothing."""

    async def notify(self, notifications: Sequence[InvoiceNotification]) -> NotificationResult:
        return NotificationResult(total=len(notifications))


class InvoiceNotificationService:
    """
    Notifies students of new invoices.

    Every item gets an in-app notice for the student's user account, plus a push
    notification and a WhatsApp message when those channels are configured. An
    item succeeds when at least one channel delivered. Items are processed in
    batches of ``batch_size`` with ``batch_delay`` seconds between batches.
    """

    def __init__(
        self,
        db: AsyncSession,
        push_sender: PushSender | None = None,
        whatsapp_sender: WhatsAppSender | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
    ):
        self.db = db
        self.push_sender = push_sender
        self.whatsapp_sender = whatsapp_sender
        self.batch_size = batch_size or settings.notification_batch_size
        self.batch_delay = (
            settings.notification_batch_delay_seconds if batch_delay is None else batch_delay
        )

    async def notify(self, notifications: Sequence[InvoiceNotification]) -> NotificationResult:
        result = NotificationResult(total=len(notifications))
        if not notifications:
            return result

        students = await self._load_students({n.student_id for n in notifications})

        for start in range(0, len(notifications), self.batch_size):
            if start:
                await asyncio.sleep(self.batch_delay)
            batch = notifications[start : start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._deliver(item, students.get(item.student_id)) for item in batch),
                return_exceptions=True,
            )
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    result.failed += 1
                    result.errors.append(
                        NotificationError(
                            student_id=item.student_id,
                            invoice_id=item.invoice_id,
                            error=str(outcome),
                        )
                    )
                else:
                    result.successful += 1
            # Notices are added synchronously above; one flush per batch
            await self.db.flush()

        await self.db.commit()
        logger.info(
            "Invoice notifications: %d total, %d sent, %d failed",
            result.total,
            result.successful,
            result.failed,
        )
        return result

    async def _load_students(self, student_ids: set[int]) -> dict[int, Student]:
        result = await self.db.execute(select(Student).where(Student.id.in_(student_ids)))
        return {student.id: student for student in result.scalars().all()}

    async def _deliver(self, item: InvoiceNotification, student: Student | None) -> None:
        """Send one notification over every available channel."""
        if student is None:
            raise NotFoundError("Student", item.student_id)

        title = f"New Invoice for {item.period}"
        amount = format_money(item.amount, settings.currency_code)
        due = item.due_date.strftime("%d %b %Y")
        body = f"A new invoice of {amount} has been generated for {item.period}. Due date: {due}."

        delivered = False
        if student.user_id is not None:
            # Added to the session only; no awaits on the shared session inside gather
            self.db.add(
                Notice(
                    branch_id=item.branch_id,
                    title=title,
                    content=body,
                    notice_type=NoticeType.FEE_REMINDER.value,
                    priority=NoticePriority.HIGH.value,
                    target_audience=NoticeAudience.STUDENTS.value,
                    recipient_user_id=student.user_id,
                )
            )
            delivered = True

            if self.push_sender is not None:
                try:
                    await self.push_sender.send(
                        student.user_id,
                        title,
                        body,
                        {"type": "invoice", "invoice_id": item.invoice_id, "url": "/fees"},
                    )
                except Exception as e:
                    logger.warning("Push notification to student %s failed: %s", student.id, e)

        if self.whatsapp_sender is not None and student.phone_number:
            message = f"Dear {student.first_name}, {body}"
            try:
                await self.whatsapp_sender.send(student.phone_number, message)
                delivered = True
            except Exception as e:
                if not delivered:
                    raise
                logger.warning("WhatsApp notification to student %s failed: %s", student.id, e)

        if not delivered:
            raise ValidationError(f"Student {student.id} has no account or phone to notify")


def build_invoice_notifier(db: AsyncSession, push_sender: PushSender | None = None) -> InvoiceNotifier:
    """Notifier wired from settings: WhatsApp channel only when the gateway is configured."""
    whatsapp_sender = None
    if settings.whatsapp_configured:
        whatsapp_sender = HttpWhatsAppSender(
            settings.whatsapp_api_url,
            settings.whatsapp_api_token,
            timeout=settings.whatsapp_timeout_seconds,
        )
    return InvoiceNotificationService(db, push_sender=push_sender, whatsapp_sender=whatsapp_sender)
