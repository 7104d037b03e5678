from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import List, Optional, Union

from dateutil.relativedelta import relativedelta

from loan_tracker.config import get_settings
from loan_tracker.enums import INTEREST_ONLY_LOAN_TYPES, LoanType
from loan_tracker.exceptions import LoanValidationError


# Set high precision for intermediate calculations
getcontext().prec = 28


TWOPLACES = Decimal("0.01")
ZERO = Decimal(0)


def to_money(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic; Jan 31 + 1 month is the last day of February."""
    return start + relativedelta(months=months)


@dataclass
class ScheduleEntry:
    payment_number: int
    payment_amount: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    remaining_balance: Decimal
    payment_date: Optional[date] = None


@dataclass
class AmortizationResult:
    monthly_payment: Decimal
    total_interest: Decimal
    total_amount: Decimal
    schedule: List[ScheduleEntry] = field(default_factory=list)


def coerce_loan_type(loan_type: Union[LoanType, str]) -> LoanType:
    try:
        return LoanType(loan_type)
    except ValueError:
        raise LoanValidationError(f"Invalid loan type: {loan_type!r}") from None


def validate_terms(
    principal: Decimal,
    annual_interest_rate_percent: Decimal,
    term_months: int,
    loan_type: Union[LoanType, str],
) -> LoanType:
    """Reject terms no schedule should ever be generated for.

    Returns the loan type as a ``LoanType`` member.
    """
    settings = get_settings()

    if principal is None or Decimal(principal) <= 0:
        raise LoanValidationError("Principal amount must be greater than zero")
    if Decimal(principal) > settings.max_principal_amount:
        raise LoanValidationError(
            f"Principal amount must not exceed {settings.max_principal_amount}"
        )
    if annual_interest_rate_percent is None:
        raise LoanValidationError("Interest rate is required")
    rate = Decimal(annual_interest_rate_percent)
    if rate < 0 or rate > settings.max_interest_rate:
        raise LoanValidationError(
            f"Interest rate must be between 0 and {settings.max_interest_rate} (percentage)"
        )
    if isinstance(term_months, bool) or not isinstance(term_months, int) or term_months < 1:
        raise LoanValidationError("Loan term must be at least 1 month")
    return coerce_loan_type(loan_type)


def is_interest_only(loan_type: Union[LoanType, str]) -> bool:
    return coerce_loan_type(loan_type) in INTEREST_ONLY_LOAN_TYPES


def compute_monthly_payment(
    amount: Decimal,
    annual_interest_rate_percent: Decimal,
    term_months: int,
    loan_type: Union[LoanType, str] = LoanType.PERSONAL,
) -> Decimal:
    """Unrounded monthly payment for the loan's repayment mode."""
    principal = Decimal(amount)
    monthly_rate = Decimal(annual_interest_rate_percent) / Decimal(100) / Decimal(12)

    if is_interest_only(loan_type):
        return principal * monthly_rate

    if monthly_rate == 0:
        return principal / Decimal(term_months)

    growth = (1 + monthly_rate) ** term_months
    return principal * monthly_rate * growth / (growth - 1)


def calculate_amortization(
    amount: Decimal,
    annual_interest_rate_percent: Decimal,
    term_months: int,
    loan_type: Union[LoanType, str],
) -> AmortizationResult:
    """Monthly payment, total interest and the full payment-by-payment schedule.

    Three repayment modes are supported:

    * interest-only (Gold Loan, Private Money Lending, Other): every payment is
      ``principal * monthly_rate`` and the balance never reduces;
    * zero-rate: ``principal / term_months`` per month, no interest;
    * standard EMI: ``P r (1+r)^n / ((1+r)^n - 1)``.

    Amounts in the returned schedule are kept at full precision; callers
    quantize with :func:`to_money` when storing or displaying them. Payment
    dates are left unset.
    """
    loan_type = validate_terms(amount, annual_interest_rate_percent, term_months, loan_type)

    principal = Decimal(amount)
    monthly_rate = Decimal(annual_interest_rate_percent) / Decimal(100) / Decimal(12)
    interest_only = loan_type in INTEREST_ONLY_LOAN_TYPES
    monthly_payment = compute_monthly_payment(
        principal, annual_interest_rate_percent, term_months, loan_type
    )

    schedule: List[ScheduleEntry] = []
    remaining = principal
    total_interest = ZERO

    for payment_number in range(1, term_months + 1):
        interest = remaining * monthly_rate
        if interest_only:
            principal_component = ZERO
        else:
            principal_component = monthly_payment - interest
            remaining = remaining - principal_component
        total_interest += interest
        # Guard for final drift-induced negative balances
        remaining = max(remaining, ZERO)
        schedule.append(
            ScheduleEntry(
                payment_number=payment_number,
                payment_amount=monthly_payment,
                principal_paid=principal_component,
                interest_paid=interest,
                remaining_balance=remaining,
            )
        )

    return AmortizationResult(
        monthly_payment=monthly_payment,
        total_interest=total_interest,
        total_amount=principal + total_interest,
        schedule=schedule,
    )


def assign_payment_dates(schedule: List[ScheduleEntry], start_date: date) -> List[ScheduleEntry]:
    for entry in schedule:
        entry.payment_date = add_months(start_date, entry.payment_number - 1)
    return schedule
