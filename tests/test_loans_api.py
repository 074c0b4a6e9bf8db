from datetime import date
from decimal import Decimal
from uuid import uuid4

from microloans.models.loan_payment import LoanPayment, LoanPaymentAllocation
from microloans.schemas.loan import UserRole
from microloans.services import (
    approval_workflow,
    loan_applications,
    loan_ledger,
    loan_queue,
    repayments,
)
from microloans.services.exceptions import ApprovalOutOfOrder, ConcurrentLoanUpdate
from conftest import actor_headers, make_approval_log, make_installment, make_loan, make_member


def _payment_outcome(loan, amount="150.00", source_type="MANUAL"):
    payment = LoanPayment(
        id=uuid4(),
        loan_id=loan.id,
        member_id=loan.member_id,
        amount=Decimal(amount),
        allocated_amount=Decimal(amount),
        unallocated_amount=Decimal("0.00"),
        payment_date=date(2026, 2, 1),
        source_type=source_type,
    )
    allocation = LoanPaymentAllocation(
        id=uuid4(), payment_id=payment.id, installment_id=uuid4(), amount=Decimal(amount)
    )
    return repayments.PaymentOutcome(loan=loan, payment=payment, allocations=[allocation])


def test_schedule_preview_returns_annuity_schedule(client):
    response = client.get(
        "/api/v1/loans/schedule-preview",
        params={"amount": "5000", "interest_rate": "5", "tenure_months": 12},
        headers=actor_headers(UserRole.MEMBER),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "ok"
    data = body["data"]
    assert Decimal(data["periodic_payment"]) == Decimal("428.04")
    assert data["number_of_periods"] == 12
    assert len(data["entries"]) == 12


def test_schedule_preview_rejects_out_of_range_term(client):
    response = client.get(
        "/api/v1/loans/schedule-preview",
        params={"amount": "5000", "interest_rate": "5", "tenure_months": 400},
        headers=actor_headers(UserRole.LOAN_OFFICER),
    )

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["details"]["field"] == "term_months"


def test_missing_identity_headers_is_unauthorized(client):
    response = client.get(
        "/api/v1/loans/schedule-preview",
        params={"amount": "5000", "interest_rate": "5", "tenure_months": 12},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "unauthorized"


def test_unknown_role_is_forbidden(client):
    response = client.get(
        "/api/v1/loans/schedule-preview",
        params={"amount": "5000", "interest_rate": "5", "tenure_months": 12},
        headers=actor_headers("AUDITOR"),
    )

    assert response.status_code == 403


def test_apply_creates_pending_loan(client, monkeypatch):
    member = make_member()
    captured = {}

    async def _apply(db, actor, member_id, amount, interest_rate, tenure_months, frequency, remarks):
        captured.update(actor=actor, member_id=member_id, amount=amount, frequency=frequency)
        return make_loan(member=member, amount=str(amount))

    monkeypatch.setattr(loan_applications, "apply_for_loan", _apply)

    response = client.post(
        "/api/v1/loans",
        json={"member_id": str(member.id), "amount": "5000", "interest_rate": "5", "tenure_months": 12},
        headers=actor_headers(UserRole.MEMBER, member.user_id),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "PENDING"
    assert data["next_expected_role"] == "LOAN_OFFICER"
    assert captured["member_id"] == member.id
    assert captured["actor"].role == UserRole.MEMBER
    assert captured["frequency"] == "MONTHLY"


def test_apply_validates_payload(client):
    response = client.post(
        "/api/v1/loans",
        json={"member_id": str(uuid4()), "amount": "-1", "interest_rate": "5", "tenure_months": 12},
        headers=actor_headers(UserRole.MEMBER),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_branch_manager_cannot_apply(client):
    response = client.post(
        "/api/v1/loans",
        json={"member_id": str(uuid4()), "amount": "100", "interest_rate": "5", "tenure_months": 12},
        headers=actor_headers(UserRole.BRANCH_MANAGER),
    )

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


def test_approval_returns_updated_loan_and_next_role(client, monkeypatch):
    loan = make_loan(status="VERIFIED")

    async def _submit(db, loan_id, actor, decision, comments=None, **kwargs):
        assert loan_id == loan.id
        assert decision == "APPROVE"
        return loan

    monkeypatch.setattr(approval_workflow, "submit_approval", _submit)

    response = client.post(
        f"/api/v1/loans/{loan.id}/approvals",
        json={"decision": "APPROVE", "comments": "ok"},
        headers=actor_headers(UserRole.LOAN_OFFICER),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "VERIFIED"
    assert data["next_expected_role"] == "BRANCH_MANAGER"


def test_out_of_order_approval_maps_to_conflict(client, monkeypatch):
    async def _submit(db, loan_id, actor, decision, comments=None, **kwargs):
        raise ApprovalOutOfOrder(
            "Approval submitted out of order",
            details={"actor_role": "FINANCE_ADMIN", "expected_role": "LOAN_OFFICER"},
        )

    monkeypatch.setattr(approval_workflow, "submit_approval", _submit)

    response = client.post(
        f"/api/v1/loans/{uuid4()}/approvals",
        json={"decision": "APPROVE"},
        headers=actor_headers(UserRole.FINANCE_ADMIN),
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "out_of_order"
    assert body["details"]["expected_role"] == "LOAN_OFFICER"
    assert body["data"] is None


def test_concurrent_update_maps_to_conflict(client, monkeypatch):
    async def _submit(db, loan_id, actor, decision, comments=None, **kwargs):
        raise ConcurrentLoanUpdate("Loan was modified concurrently; retry the operation")

    monkeypatch.setattr(approval_workflow, "submit_approval", _submit)

    response = client.post(
        f"/api/v1/loans/{uuid4()}/approvals",
        json={"decision": "REJECT"},
        headers=actor_headers(UserRole.BRANCH_MANAGER),
    )

    assert response.status_code == 409
    assert response.json()["code"] == "concurrent_update"


def test_member_cannot_submit_approvals(client):
    response = client.post(
        f"/api/v1/loans/{uuid4()}/approvals",
        json={"decision": "APPROVE"},
        headers=actor_headers(UserRole.MEMBER),
    )

    assert response.status_code == 403


def test_record_payment(client, monkeypatch):
    loan = make_loan(status="DISBURSED", remaining_amount=Decimal("50.00"))
    captured = {}

    async def _apply(db, loan_id, amount, **kwargs):
        captured.update(kwargs, amount=amount)
        return _payment_outcome(loan)

    monkeypatch.setattr(repayments, "apply_payment", _apply)

    response = client.post(
        f"/api/v1/loans/{loan.id}/payments",
        json={"amount": "150.00", "payment_date": "2026-02-01", "source_type": "BANK", "reference": "TRX-9"},
        headers=actor_headers(UserRole.FINANCE_ADMIN),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert Decimal(data["loan"]["remaining_amount"]) == Decimal("50.00")
    assert Decimal(data["payment"]["amount"]) == Decimal("150.00")
    assert len(data["allocations"]) == 1
    assert captured["amount"] == Decimal("150.00")
    assert captured["source_type"] == "BANK"
    assert captured["payment_date"] == date(2026, 2, 1)
    assert captured["reference"] == "TRX-9"


def test_member_payment_defaults_to_payroll_source(client, monkeypatch):
    member = make_member()
    loan = make_loan(member=member, status="DISBURSED")
    captured = {}

    async def _apply(db, member_id, amount, **kwargs):
        captured.update(kwargs, member_id=member_id)
        return _payment_outcome(loan, source_type=kwargs["source_type"])

    monkeypatch.setattr(repayments, "apply_member_payment", _apply)

    response = client.post(
        f"/api/v1/members/{member.id}/loan-payments",
        json={"amount": "150.00"},
        headers=actor_headers(UserRole.LOAN_OFFICER),
    )

    assert response.status_code == 201
    assert captured["member_id"] == member.id
    assert captured["source_type"] == "PAYROLL"
    assert response.json()["data"]["payment"]["source_type"] == "PAYROLL"


def test_loan_detail_includes_logs_and_schedule(client, monkeypatch):
    member = make_member()
    loan = make_loan(member=member, status="VERIFIED")
    loan.approval_logs = [
        make_approval_log(loan, UserRole.MEMBER, 0),
        make_approval_log(loan, UserRole.LOAN_OFFICER, 1),
    ]
    loan.installments = [make_installment(loan, 1), make_installment(loan, 2)]
    loan.payments = []

    async def _get(db, loan_id):
        return loan

    async def _member(db, member_id, *, for_update=False):
        return member

    monkeypatch.setattr(loan_ledger, "get_loan_with_related", _get)
    monkeypatch.setattr(loan_ledger, "get_member", _member)

    response = client.get(f"/api/v1/loans/{loan.id}", headers=actor_headers(UserRole.MEMBER, member.user_id))

    assert response.status_code == 200
    data = response.json()["data"]
    assert [log["approval_order"] for log in data["approval_logs"]] == [0, 1]
    assert len(data["installments"]) == 2
    assert data["next_expected_role"] == "BRANCH_MANAGER"


def test_members_cannot_read_other_members_loans(client, monkeypatch):
    member = make_member()
    loan = make_loan(member=member)

    async def _get(db, loan_id):
        return loan

    async def _member(db, member_id, *, for_update=False):
        return member

    monkeypatch.setattr(loan_ledger, "get_loan_with_related", _get)
    monkeypatch.setattr(loan_ledger, "get_member", _member)

    response = client.get(f"/api/v1/loans/{loan.id}", headers=actor_headers(UserRole.MEMBER))

    assert response.status_code == 404
    assert response.json()["code"] == "loan_not_found"


def test_queue_lists_loans_for_caller_rank(client, monkeypatch):
    loan = make_loan(status="VERIFIED")
    seen = {}

    async def _queue(db, role, *, limit, offset):
        seen["role"] = role
        return [loan], 1

    monkeypatch.setattr(loan_queue, "list_queue_for_role", _queue)

    response = client.get("/api/v1/loans/queue", headers=actor_headers(UserRole.REGIONAL_MANAGER))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["next_expected_role"] == "REGIONAL_MANAGER"
    assert seen["role"] == UserRole.REGIONAL_MANAGER


def test_list_loans_filters_by_status(client, monkeypatch):
    loan = make_loan(status="APPROVED")
    seen = {}

    async def _list(db, *, status, member_id, limit, offset):
        seen.update(status=status, member_id=member_id, limit=limit)
        return [loan], 1

    async def _orders(db, loan_ids):
        return {loan.id: 3}

    monkeypatch.setattr(loan_queue, "list_loans", _list)
    monkeypatch.setattr(loan_queue, "last_approval_orders", _orders)

    response = client.get(
        "/api/v1/loans",
        params={"status": "APPROVED", "limit": 10},
        headers=actor_headers(UserRole.FINANCE_ADMIN),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["items"][0]["next_expected_role"] == "FINANCE_ADMIN"
    assert seen == {"status": "APPROVED", "member_id": None, "limit": 10}


def test_approval_history(client, monkeypatch):
    loan = make_loan()

    async def _history(db, *, loan_id, limit, offset):
        assert loan_id == loan.id
        return [make_approval_log(loan, UserRole.MEMBER, 0)], 1

    monkeypatch.setattr(loan_queue, "list_approval_history", _history)

    response = client.get(
        "/api/v1/loans/approval-history",
        params={"loan_id": str(loan.id)},
        headers=actor_headers(UserRole.BRANCH_MANAGER),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["actor_role"] == "MEMBER"
