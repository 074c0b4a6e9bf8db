"""Amortization schedule calculation.

Pure functions: nothing here touches the database, so the same code backs the
schedule preview endpoint and the installments persisted at disbursement.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

from microloans.core.settings import settings
from microloans.schemas.loan import AmortizationEntry, AmortizationSchedule, RepaymentFrequency
from microloans.services.exceptions import LoanValidationError


TWOPLACES = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")
# Matches the precision of loans.interest_rate.
ANNUAL_RATE_PLACES = Decimal("0.0001")

MONTHS_PER_PERIOD = {
    RepaymentFrequency.MONTHLY: 1,
    RepaymentFrequency.QUARTERLY: 3,
    RepaymentFrequency.ANNUALLY: 12,
}


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    return annual_rate_percent / Decimal("100") / Decimal("12")


def period_terms(
    annual_rate_percent: Decimal,
    term_months: int,
    frequency: RepaymentFrequency | str,
) -> tuple[Decimal, int]:
    """Return ``(rate_per_period, number_of_periods)`` for a repayment frequency."""
    months = MONTHS_PER_PERIOD[RepaymentFrequency(frequency)]
    rate = _monthly_rate(_as_decimal(annual_rate_percent)) * Decimal(months)
    periods = -(-int(term_months) // months)
    return rate, periods


def periodic_payment(
    principal: Decimal,
    rate_per_period: Decimal,
    number_of_periods: int,
    rounding: str = ROUND_HALF_UP,
) -> Decimal:
    """Equal installment for the schedule.

    Zero-rate loans always round down: ``n - 1`` rounded-down shares can never
    clear the principal, so only the final period carries the residual.
    """
    if rate_per_period == 0:
        return (principal / Decimal(number_of_periods)).quantize(TWOPLACES, rounding=ROUND_DOWN)
    factor = (Decimal("1") + rate_per_period) ** number_of_periods
    exact = principal * rate_per_period * factor / (factor - Decimal("1"))
    return exact.quantize(TWOPLACES, rounding=rounding)


def _build_entries(
    principal: Decimal,
    rate: Decimal,
    periods: int,
    payment: Decimal,
) -> list[AmortizationEntry]:
    balance = principal
    entries: list[AmortizationEntry] = []
    for period in range(1, periods + 1):
        interest = _money(balance * rate)
        principal_portion = payment - interest
        period_payment = payment
        if period == periods or principal_portion >= balance:
            principal_portion = balance
            period_payment = principal_portion + interest
        balance = balance - principal_portion
        entries.append(
            AmortizationEntry(
                period=period,
                payment=period_payment,
                principal_portion=principal_portion,
                interest_portion=interest,
                balance=balance,
            )
        )
        if balance <= 0:
            break
    return entries


def validate_terms(
    principal: Decimal,
    annual_rate_percent: Decimal,
    term_months: int,
    *,
    max_term_months: int | None = None,
    max_annual_rate_percent: Decimal | None = None,
) -> None:
    max_term = max_term_months if max_term_months is not None else settings.max_term_months
    max_rate = (
        max_annual_rate_percent if max_annual_rate_percent is not None else settings.max_annual_rate_percent
    )
    if principal <= 0:
        raise LoanValidationError(
            "Loan amount must be greater than zero",
            details={"field": "amount", "constraint": "value > 0", "value": str(principal)},
        )
    if annual_rate_percent < 0 or annual_rate_percent > max_rate:
        raise LoanValidationError(
            f"Interest rate must be between 0 and {max_rate} percent",
            details={
                "field": "interest_rate",
                "constraint": f"0 <= value <= {max_rate}",
                "value": str(annual_rate_percent),
            },
        )
    if term_months < 1 or term_months > max_term:
        raise LoanValidationError(
            f"Term must be between 1 and {max_term} months",
            details={
                "field": "term_months",
                "constraint": f"1 <= value <= {max_term}",
                "value": term_months,
            },
        )


def compute_schedule(
    principal,
    annual_rate_percent,
    term_months: int,
    frequency: RepaymentFrequency | str = RepaymentFrequency.MONTHLY,
    *,
    max_term_months: int | None = None,
    max_annual_rate_percent: Decimal | None = None,
) -> AmortizationSchedule:
    """Build an equal-installment schedule.

    Each period is rounded to cents. The last period takes the exact remaining
    balance, so the principal portions always sum to ``principal`` and the
    payments always sum to ``total_payment``. The annual rate is rounded to the
    four places a loan stores, so a preview, an application and the schedule
    rebuilt at disbursement all agree.
    """
    frequency = RepaymentFrequency(frequency)
    principal = _money(_as_decimal(principal))
    annual_rate = _as_decimal(annual_rate_percent)
    term_months = int(term_months)
    validate_terms(
        principal,
        annual_rate,
        term_months,
        max_term_months=max_term_months,
        max_annual_rate_percent=max_annual_rate_percent,
    )
    annual_rate = annual_rate.quantize(ANNUAL_RATE_PLACES, rounding=ROUND_HALF_UP)

    rate, periods = period_terms(annual_rate, term_months, frequency)
    payment = periodic_payment(principal, rate, periods)
    entries = _build_entries(principal, rate, periods, payment)
    if len(entries) < periods:
        # Tiny installments where half-up rounding clears the balance early.
        payment = periodic_payment(principal, rate, periods, rounding=ROUND_DOWN)
        entries = _build_entries(principal, rate, periods, payment)

    total_payment = sum((entry.payment for entry in entries), Decimal("0.00"))
    return AmortizationSchedule(
        principal=principal,
        annual_rate_percent=annual_rate,
        term_months=term_months,
        frequency=frequency,
        rate_per_period=rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP),
        number_of_periods=periods,
        periodic_payment=payment,
        total_payment=total_payment,
        total_interest=total_payment - principal,
        entries=entries,
    )


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_dates(start: date, frequency: RepaymentFrequency | str, count: int) -> list[date]:
    months = MONTHS_PER_PERIOD[RepaymentFrequency(frequency)]
    return [add_months(start, months * period) for period in range(1, count + 1)]
