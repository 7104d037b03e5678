"""
Duplicate loan detection.

Loans are entered by hand, so users sometimes double-submit a form or re-enter
a loan under a slightly different name. A candidate is compared against the
user's active loans using an ordered rule table; the first rule that both
applies to the candidate and matches an existing loan wins:

    exact_duplicate   every provided field matches
    similar_loan      same name and lender, principal within 10%
    same_name_lender  same name and lender, any terms

Names compare case-insensitively, lenders treat missing and empty as equal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_tracker.amortization import to_money
from loan_tracker.config import get_settings
from loan_tracker.enums import DuplicateReason, LoanStatus
from loan_tracker.models import Loan

logger = logging.getLogger(__name__)


class _NotProvided:
    def __repr__(self) -> str:
        return "NOT_PROVIDED"


NOT_PROVIDED = _NotProvided()


@dataclass(frozen=True)
class LoanCandidate:
    """The fields of a new or edited loan that take part in matching.

    ``lender`` defaults to ``NOT_PROVIDED`` because an explicit ``None`` is a
    value to match on (a loan with no lender).
    """

    name: Optional[str] = None
    amount: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    term_months: Optional[int] = None
    lender: object = NOT_PROVIDED

    @classmethod
    def from_fields(cls, fields: dict) -> LoanCandidate:
        return cls(
            name=fields.get("name") or None,
            amount=fields.get("amount"),
            interest_rate=fields.get("interest_rate"),
            term_months=fields.get("term_months"),
            lender=fields["lender"] if "lender" in fields else NOT_PROVIDED,
        )

    @property
    def has_lender(self) -> bool:
        return self.lender is not NOT_PROVIDED

    @property
    def is_empty(self) -> bool:
        return (
            self.name is None
            and self.amount is None
            and self.interest_rate is None
            and self.term_months is None
            and not self.has_lender
        )


@dataclass(frozen=True)
class DuplicateMatch:
    loan: Loan
    reason: DuplicateReason


def _same_name(loan: Loan, name: str) -> bool:
    return (loan.name or "").lower() == name.lower()


def _same_lender(loan: Loan, lender: Optional[str]) -> bool:
    return (loan.lender or "") == (lender or "")


def _is_exact(candidate: LoanCandidate, loan: Loan) -> bool:
    if candidate.name is not None and not _same_name(loan, candidate.name):
        return False
    if candidate.amount is not None and Decimal(loan.principal_amount) != Decimal(candidate.amount):
        return False
    if candidate.interest_rate is not None and Decimal(loan.interest_rate) != Decimal(
        candidate.interest_rate
    ):
        return False
    if candidate.term_months is not None and loan.term_months != candidate.term_months:
        return False
    if candidate.has_lender and not _same_lender(loan, candidate.lender):
        return False
    return True


def _is_similar(candidate: LoanCandidate, loan: Loan) -> bool:
    amount = Decimal(candidate.amount)
    if amount == 0:
        return False
    tolerance = get_settings().similar_amount_tolerance
    return (
        _same_name(loan, candidate.name)
        and _same_lender(loan, candidate.lender)
        and abs(Decimal(loan.principal_amount) - amount) / amount < tolerance
    )


def _is_same_name_lender(candidate: LoanCandidate, loan: Loan) -> bool:
    return _same_name(loan, candidate.name) and _same_lender(loan, candidate.lender)


Rule = Tuple[DuplicateReason, Callable[[LoanCandidate], bool], Callable[[LoanCandidate, Loan], bool]]

RULES: Sequence[Rule] = (
    (
        DuplicateReason.EXACT_DUPLICATE,
        lambda c: not c.is_empty,
        _is_exact,
    ),
    (
        DuplicateReason.SIMILAR_LOAN,
        lambda c: c.name is not None and c.amount is not None and c.has_lender,
        _is_similar,
    ),
    (
        DuplicateReason.SAME_NAME_LENDER,
        lambda c: c.name is not None and c.has_lender,
        _is_same_name_lender,
    ),
)


def find_duplicate(
    candidate: LoanCandidate,
    existing: Iterable[Loan],
    exclude_loan_id: Optional[str] = None,
) -> Optional[DuplicateMatch]:
    """Run the rule table over ``existing`` loans; ``None`` means no duplicate.

    Only active loans are considered. ``exclude_loan_id`` keeps a loan from
    matching itself while it is being edited.
    """
    if candidate.is_empty:
        return None

    loans: List[Loan] = [
        loan
        for loan in existing
        if loan.status != LoanStatus.PAID_OFF.value and loan.id != exclude_loan_id
    ]

    for reason, applies, matches in RULES:
        if not applies(candidate):
            continue
        for loan in loans:
            if matches(candidate, loan):
                return DuplicateMatch(loan=loan, reason=reason)
    return None


def check_for_duplicate(
    db: Session,
    user_id: str,
    candidate: LoanCandidate,
    exclude_loan_id: Optional[str] = None,
) -> Optional[DuplicateMatch]:
    """Look up the user's active loans and match ``candidate`` against them.

    A failing lookup is logged and treated as "no duplicate" so that a database
    hiccup here never blocks a legitimate loan from being saved.
    """
    if candidate.is_empty:
        return None

    try:
        loans = db.scalars(
            select(Loan)
            .where(Loan.user_id == user_id, Loan.status != LoanStatus.PAID_OFF.value)
            .order_by(Loan.created_at.asc())
        ).all()
    except SQLAlchemyError:
        logger.exception("Error checking for duplicate loans for user %s", user_id)
        db.rollback()
        return None

    return find_duplicate(candidate, loans, exclude_loan_id=exclude_loan_id)


def format_currency(amount: Optional[Decimal]) -> str:
    if amount is None:
        return "₹0"
    return f"₹{to_money(Decimal(amount)):,.0f}"


def _format_rate(rate: Decimal) -> str:
    return f"{Decimal(rate).normalize():f}"


def duplicate_message(match: DuplicateMatch) -> str:
    loan = match.loan
    if match.reason is DuplicateReason.EXACT_DUPLICATE:
        return (
            f'A loan with identical details already exists: "{loan.name}" '
            f"({format_currency(loan.principal_amount)}, {_format_rate(loan.interest_rate)}%, "
            f"{loan.term_months} months, {loan.lender or 'No lender'})"
        )
    if match.reason is DuplicateReason.SIMILAR_LOAN:
        return (
            f'A similar loan already exists: "{loan.name}" from '
            f"{loan.lender or 'the same lender'} with amount "
            f"{format_currency(loan.principal_amount)}. Please use a different name or lender."
        )
    if match.reason is DuplicateReason.SAME_NAME_LENDER:
        return (
            f'A loan named "{loan.name}" already exists from '
            f"{loan.lender or 'the same lender'}. Please use a different name or lender."
        )
    return "A similar loan already exists. Please check your existing loans."
