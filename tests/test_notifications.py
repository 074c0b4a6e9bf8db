import logging
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from microloans.core.settings import LedgerPostingConfig
from microloans.models.loan_payment import LoanPayment
from microloans.models.notification import Notification
from microloans.services import ledger_posting, notifications
from conftest import FailingNotifier, FakeAsyncSession, RecordingNotifier, make_loan


def _message(**overrides) -> notifications.NotificationMessage:
    defaults = dict(
        user_id=uuid4(),
        title="Loan Status Update",
        message="Your loan application status has been updated to VERIFIED.",
        notification_type=notifications.LOAN_STATUS_UPDATE,
    )
    defaults.update(overrides)
    return notifications.NotificationMessage(**defaults)


class _SessionContext:
    def __init__(self, session: FakeAsyncSession) -> None:
        self.session = session

    async def __aenter__(self) -> FakeAsyncSession:
        return self.session

    async def __aexit__(self, *exc_info) -> None:
        return None


@pytest.mark.asyncio
async def test_dispatch_delivers_every_message():
    recorder = RecordingNotifier()
    messages = [_message(), _message()]

    delivered = await notifications.dispatch(messages, recorder)

    assert delivered == 2
    assert recorder.messages == messages


@pytest.mark.asyncio
async def test_dispatch_logs_and_swallows_failures(caplog):
    failing = FailingNotifier()

    with caplog.at_level(logging.ERROR, logger="microloans.services.notifications"):
        delivered = await notifications.dispatch([_message(), _message()], failing)

    assert delivered == 0
    assert failing.attempts == 2
    assert "Notification delivery failed" in caplog.text


@pytest.mark.asyncio
async def test_database_notifier_writes_unread_row():
    session = FakeAsyncSession()
    notifier = notifications.DatabaseNotifier(lambda: _SessionContext(session))
    message = _message(notification_type=notifications.LOAN_DISBURSEMENT_READY)

    await notifier.notify(message)

    row = session.added_of(Notification)[0]
    assert row.user_id == message.user_id
    assert row.notification_type == "LOAN_DISBURSEMENT_READY"
    assert row.is_read is False
    assert session.committed is True


def test_ledger_posting_uses_injected_accounts(fake_db):
    config = LedgerPostingConfig(loan_receivable_account="1300-MICRO", cash_account="1010-BANK", currency="KES")
    loan = make_loan(amount="2500.00")

    disbursement = ledger_posting.post_disbursement(fake_db, loan, config=config, transaction_date=date(2026, 5, 1))
    payment = LoanPayment(
        id=uuid4(),
        loan_id=loan.id,
        member_id=loan.member_id,
        amount=Decimal("300.00"),
        payment_date=date(2026, 6, 1),
    )
    repayment = ledger_posting.post_repayment(fake_db, payment, config=config)

    assert (disbursement.debit_account, disbursement.credit_account) == ("1300-MICRO", "1010-BANK")
    assert (repayment.debit_account, repayment.credit_account) == ("1010-BANK", "1300-MICRO")
    assert disbursement.currency == "KES"
    assert repayment.reference == f"payment:{payment.id}"
    assert repayment.transaction_date == date(2026, 6, 1)
    assert fake_db.added == [disbursement, repayment]
