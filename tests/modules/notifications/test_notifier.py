import json
from datetime import date
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.modules.invoices.models import Invoice
from school_billing.modules.invoices.service import InvoiceGenerationService
from school_billing.modules.notices.models import Notice, NoticePriority, NoticeType
from school_billing.modules.notifications.channels import HttpWhatsAppSender
from school_billing.modules.notifications.schemas import InvoiceNotification, NotificationResult
from school_billing.modules.notifications.service import (
    InvoiceNotificationService,
    NullInvoiceNotifier,
)


class FakePushSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[int, str]] = []

    async def send(self, user_id, title, body, data):
        if self.fail:
            raise RuntimeError("push service down")
        self.sent.append((user_id, title))


class FakeWhatsAppSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send(self, phone, message):
        if self.fail:
            raise RuntimeError("gateway down")
        self.sent.append((phone, message))


class FailingNotifier:
    async def notify(self, notifications):
        raise RuntimeError("notifier crashed")


class RecordingNotifier:
    def __init__(self):
        self.received: list[InvoiceNotification] = []

    async def notify(self, notifications):
        self.received.extend(notifications)
        return NotificationResult(total=len(notifications), successful=len(notifications))


def _notification(student_id: int, invoice_id: int = 1) -> InvoiceNotification:
    return InvoiceNotification(
        student_id=student_id,
        invoice_id=invoice_id,
        amount=Decimal("1250"),
        due_date=date(2025, 3, 11),
        period="March 2025",
    )


async def _notices(db_session: AsyncSession) -> list[Notice]:
    result = await db_session.execute(select(Notice).order_by(Notice.id))
    return list(result.scalars().all())


class TestInvoiceNotificationService:
    async def test_creates_personal_notice(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        student = await factory.student(branch)
        service = InvoiceNotificationService(db_session, batch_delay=0)

        result = await service.notify([_notification(student.id)])

        assert (result.total, result.successful, result.failed) == (1, 1, 0)
        notices = await _notices(db_session)
        assert len(notices) == 1
        notice = notices[0]
        assert notice.recipient_user_id == student.user_id
        assert notice.title == "New Invoice for March 2025"
        assert notice.notice_type == NoticeType.FEE_REMINDER.value
        assert notice.priority == NoticePriority.HIGH.value
        assert "KES 1,250.00" in notice.content
        assert "11 Mar 2025" in notice.content

    async def test_student_without_any_channel_fails(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        reachable = await factory.student(branch)
        unreachable = await factory.student(branch, with_user=False)
        service = InvoiceNotificationService(db_session, batch_delay=0)

        result = await service.notify(
            [_notification(reachable.id, 1), _notification(unreachable.id, 2), _notification(999999, 3)]
        )

        assert (result.total, result.successful, result.failed) == (3, 1, 2)
        assert {e.invoice_id for e in result.errors} == {2, 3}

    async def test_push_and_whatsapp_channels(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        with_account = await factory.student(branch, phone_number="+254700000001")
        phone_only = await factory.student(branch, with_user=False, phone_number="+254700000002")
        push = FakePushSender()
        whatsapp = FakeWhatsAppSender()
        service = InvoiceNotificationService(
            db_session, push_sender=push, whatsapp_sender=whatsapp, batch_delay=0
        )

        result = await service.notify([_notification(with_account.id, 1), _notification(phone_only.id, 2)])

        assert result.successful == 2
        assert push.sent == [(with_account.user_id, "New Invoice for March 2025")]
        assert sorted(phone for phone, _ in whatsapp.sent) == ["+254700000001", "+254700000002"]
        assert all(message.startswith("Dear Student,") for _, message in whatsapp.sent)

    async def test_channel_failures(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        with_account = await factory.student(branch, phone_number="+254700000001")
        phone_only = await factory.student(branch, with_user=False, phone_number="+254700000002")
        service = InvoiceNotificationService(
            db_session,
            push_sender=FakePushSender(fail=True),
            whatsapp_sender=FakeWhatsAppSender(fail=True),
            batch_delay=0,
        )

        result = await service.notify([_notification(with_account.id, 1), _notification(phone_only.id, 2)])

        # The in-app notice still counts when push and WhatsApp fail
        assert (result.successful, result.failed) == (1, 1)
        assert result.errors[0].invoice_id == 2
        assert "gateway down" in result.errors[0].error

    async def test_batches(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        students = [await factory.student(branch) for _ in range(5)]
        service = InvoiceNotificationService(db_session, batch_size=2, batch_delay=0)

        result = await service.notify([_notification(s.id, i) for i, s in enumerate(students)])

        assert (result.total, result.successful) == (5, 5)
        assert len(await _notices(db_session)) == 5

    async def test_empty_batch(self, db_session: AsyncSession):
        result = await InvoiceNotificationService(db_session).notify([])
        assert (result.total, result.successful, result.failed) == (0, 0, 0)


class TestGenerationNotifications:
    async def test_run_notifies_created_invoices(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        student = await factory.student(branch, scholarship_percentage="25")
        await factory.enroll(student, course)
        notifier = InvoiceNotificationService(db_session, batch_delay=0)
        service = InvoiceGenerationService(db_session, notifier=notifier)

        result = await service.generate_monthly_invoices(2025, 3)

        assert result.notifications_sent == 1
        notices = await _notices(db_session)
        assert notices[0].title == "New Invoice for March 2025"
        assert "KES 1,000.00" in notices[0].content

    async def test_amount_is_gross_amount_due(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        student = await factory.student(branch, scholarship_percentage="20")
        await factory.enroll(student, course)
        notifier = RecordingNotifier()

        result = await InvoiceGenerationService(
            db_session, notifier=notifier
        ).generate_monthly_invoices(2025, 3)

        assert result.notifications_sent == 1
        [notification] = notifier.received
        assert notification.amount == Decimal("1000.00")
        invoice = (await db_session.execute(select(Invoice))).scalar_one()
        assert invoice.scholarship_amount == Decimal("200.00")

    async def test_null_notifier_sends_nothing(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        student = await factory.student(branch)
        await factory.enroll(student, course)

        result = await InvoiceGenerationService(
            db_session, notifier=NullInvoiceNotifier()
        ).generate_monthly_invoices(2025, 3)

        assert result.created == 1
        assert result.notifications_sent == 0
        assert await _notices(db_session) == []

    async def test_notifier_crash_keeps_invoices(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        student = await factory.student(branch)
        await factory.enroll(student, course)

        result = await InvoiceGenerationService(
            db_session, notifier=FailingNotifier()
        ).generate_monthly_invoices(2025, 3)

        assert result.created == 1
        assert result.notifications_sent == 0
        invoices = (await db_session.execute(select(Invoice))).scalars().all()
        assert len(invoices) == 1


class TestHttpWhatsAppSender:
    async def test_posts_message_with_token(self, monkeypatch):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"ok": True})

        _patch_client(monkeypatch, handler)
        sender = HttpWhatsAppSender("https://wa.example.test/send", api_token="secret")

        await sender.send("+254700000001", "hello")

        assert len(captured) == 1
        assert captured[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(captured[0].content) == {"to": "+254700000001", "message": "hello"}

    async def test_gateway_error_raises(self, monkeypatch):
        _patch_client(monkeypatch, lambda request: httpx.Response(502))
        sender = HttpWhatsAppSender("https://wa.example.test/send")

        with pytest.raises(httpx.HTTPStatusError):
            await sender.send("+254700000001", "hello")


def _patch_client(monkeypatch, handler) -> None:
    """Route HttpWhatsAppSender's client through a mock transport."""
    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
