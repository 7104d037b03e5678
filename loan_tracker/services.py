"""
Loan Service
============
Loan CRUD orchestration on top of the amortization calculator and the
duplicate detector.

Every loan owns exactly ``term_months`` LoanPayment rows describing its
projected installments. The rows are written together with the loan in a
single transaction and are only rewritten when an update touches the terms
that drive amortization (amount, rate, term, loan type, start date).

Primary entry points
--------------------
  create_loan()            validate, duplicate-check, amortize, persist
  update_loan()            partial update, regenerating the schedule when needed
  delete_loan()            hard delete, schedule rows cascade
  get_loan_amortization()  persisted schedule in payment order
  get_loan_summary()       cumulative position after a given installment
  preview_amortization()   stateless calculator, nothing is persisted
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_tracker.amortization import (
    ScheduleEntry,
    add_months,
    assign_payment_dates,
    calculate_amortization,
    to_money,
    validate_terms,
)
from loan_tracker.duplicates import LoanCandidate, check_for_duplicate, duplicate_message
from loan_tracker.enums import LoanStatus
from loan_tracker.exceptions import (
    DuplicateLoanError,
    LoanNotFoundError,
    LoanValidationError,
    PersistenceError,
)
from loan_tracker.models import Loan, LoanPayment
from loan_tracker.schemas import (
    AmortizationPreview,
    AmortizationRequest,
    LoanCreate,
    LoanScheduleItem,
    LoanSummary,
    LoanUpdate,
)

logger = logging.getLogger(__name__)

DUPLICATE_CHECK_FIELDS = ("name", "amount", "interest_rate", "term_months", "lender")
AMORTIZATION_FIELDS = ("amount", "interest_rate", "term_months", "loan_type", "start_date")

# Update payload field -> Loan column
COLUMN_FOR_FIELD = {
    "name": "name",
    "loan_type": "loan_type",
    "amount": "principal_amount",
    "interest_rate": "interest_rate",
    "term_months": "term_months",
    "start_date": "start_date",
    "status": "status",
    "lender": "lender",
    "account_number": "account_number",
    "notes": "notes",
}


def _column_value(value):
    # Enums are stored by value
    return getattr(value, "value", value)


class LoanService:
    """Loan lifecycle for a single request-scoped session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create_loan(self, user_id: str, data: LoanCreate) -> Loan:
        """
        Persist a new loan and its payment schedule.

        The duplicate check sees only the fields the caller actually sent, so a
        missing lender is not compared while an explicit null lender is.

        Raises:
            LoanValidationError: terms out of range.
            DuplicateLoanError:  the candidate matches one of the user's active loans.
            PersistenceError:    the write failed; nothing was saved.
        """
        validate_terms(data.amount, data.interest_rate, data.term_months, data.loan_type)

        candidate = LoanCandidate.from_fields(
            data.model_dump(include=set(DUPLICATE_CHECK_FIELDS), exclude_unset=True)
        )
        self._ensure_not_duplicate(user_id, candidate)

        amortization = calculate_amortization(
            data.amount, data.interest_rate, data.term_months, data.loan_type
        )

        now = datetime.utcnow()
        loan = Loan(
            user_id=user_id,
            name=data.name,
            loan_type=data.loan_type.value,
            principal_amount=to_money(data.amount),
            interest_rate=data.interest_rate,
            term_months=data.term_months,
            start_date=data.start_date,
            end_date=add_months(data.start_date, data.term_months),
            monthly_payment=to_money(amortization.monthly_payment),
            total_interest=to_money(amortization.total_interest),
            outstanding_balance=to_money(data.amount),
            status=LoanStatus.ACTIVE.value,
            lender=data.lender,
            account_number=data.account_number,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )

        try:
            self.db.add(loan)
            self.db.flush()
            self._write_schedule(loan.id, loan.start_date, amortization.schedule)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error creating loan for user %s", user_id)
            raise PersistenceError("Failed to create loan") from exc

        self.db.refresh(loan)
        logger.info("Loan %s created for user %s", loan.id, user_id)
        return loan

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def get_user_loans(self, user_id: str) -> List[Loan]:
        try:
            return list(
                self.db.scalars(
                    select(Loan)
                    .where(Loan.user_id == user_id)
                    .order_by(Loan.created_at.desc())
                ).all()
            )
        except SQLAlchemyError as exc:
            logger.exception("Error getting loans for user %s", user_id)
            raise PersistenceError("Failed to fetch loans") from exc

    def get_loan_by_id(self, loan_id: str, user_id: str) -> Loan:
        """Return the loan if ``user_id`` owns it; otherwise LoanNotFoundError."""
        try:
            loan = self.db.scalars(
                select(Loan).where(Loan.id == loan_id, Loan.user_id == user_id)
            ).first()
        except SQLAlchemyError as exc:
            logger.exception("Error getting loan %s", loan_id)
            raise PersistenceError("Failed to fetch loan") from exc
        if loan is None:
            raise LoanNotFoundError("Loan not found")
        return loan

    def get_loan_amortization(self, loan_id: str, user_id: str) -> List[LoanPayment]:
        try:
            payments = list(
                self.db.scalars(
                    select(LoanPayment)
                    .join(Loan, Loan.id == LoanPayment.loan_id)
                    .where(LoanPayment.loan_id == loan_id, Loan.user_id == user_id)
                    .order_by(LoanPayment.payment_number.asc())
                ).all()
            )
        except SQLAlchemyError as exc:
            logger.exception("Error getting amortization for loan %s", loan_id)
            raise PersistenceError("Failed to fetch amortization schedule") from exc
        if not payments:
            raise LoanNotFoundError("Loan not found or no schedule available")
        return payments

    def get_loan_summary(self, loan_id: str, user_id: str, month: int) -> LoanSummary:
        """Cumulative principal and interest paid after installment ``month``."""
        loan = self.get_loan_by_id(loan_id, user_id)
        if month < 1 or month > loan.term_months:
            raise LoanValidationError("Month exceeds loan term")

        payments = self.get_loan_amortization(loan_id, user_id)[:month]
        total_principal_paid = sum((p.principal_paid for p in payments), Decimal(0))
        total_interest_paid = sum((p.interest_paid for p in payments), Decimal(0))
        last = payments[-1]

        return LoanSummary(
            month=month,
            payment_date=last.payment_date,
            principal_balance=to_money(last.remaining_balance),
            total_principal_paid=to_money(total_principal_paid),
            total_interest_paid=to_money(total_interest_paid),
            payments_remaining=loan.term_months - month,
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------
    def update_loan(self, loan_id: str, user_id: str, data: LoanUpdate) -> Loan:
        """
        Apply a partial update.

        Touching name, amount, rate, term or lender re-runs the duplicate check
        against the merged loan, ignoring the loan itself. Changing amount,
        rate, term, loan type or start date recomputes the amortization, resets
        the outstanding balance to the principal and replaces the schedule.
        Any other change (notes, status, account number) leaves the schedule
        alone.

        Raises:
            LoanNotFoundError:   no loan with this id belongs to ``user_id``.
            LoanValidationError: merged terms out of range.
            DuplicateLoanError:  the merged loan matches another active loan.
            PersistenceError:    the write failed; nothing was saved.
        """
        loan = self.get_loan_by_id(loan_id, user_id)
        changes = data.model_dump(exclude_unset=True)

        amortization = None
        if self._changes_amortization(loan, changes):
            amount = changes.get("amount") or loan.principal_amount
            rate = changes.get("interest_rate")
            if rate is None:
                rate = loan.interest_rate
            term = changes.get("term_months") or loan.term_months
            loan_type = changes.get("loan_type") or loan.loan_type
            amortization = calculate_amortization(amount, rate, term, loan_type)

        if any(field in changes for field in DUPLICATE_CHECK_FIELDS):
            merged = {
                "name": loan.name,
                "amount": loan.principal_amount,
                "interest_rate": loan.interest_rate,
                "term_months": loan.term_months,
                "lender": loan.lender,
            }
            merged.update(
                {
                    k: v
                    for k, v in changes.items()
                    if k in DUPLICATE_CHECK_FIELDS and (v is not None or k == "lender")
                }
            )
            self._ensure_not_duplicate(
                user_id, LoanCandidate.from_fields(merged), exclude_loan_id=loan.id
            )

        for field, value in changes.items():
            # Required columns cannot be cleared
            if value is None and field not in ("lender", "account_number", "notes"):
                continue
            setattr(loan, COLUMN_FOR_FIELD[field], _column_value(value))

        if amortization is not None:
            loan.end_date = add_months(loan.start_date, loan.term_months)
            loan.monthly_payment = to_money(amortization.monthly_payment)
            loan.total_interest = to_money(amortization.total_interest)
            loan.outstanding_balance = to_money(loan.principal_amount)

        loan.updated_at = datetime.utcnow()

        try:
            if amortization is not None:
                self._write_schedule(loan.id, loan.start_date, amortization.schedule)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error updating loan %s", loan_id)
            raise PersistenceError("Failed to update loan") from exc

        self.db.refresh(loan)
        logger.info(
            "Loan %s updated for user %s%s",
            loan_id,
            user_id,
            " (schedule regenerated)" if amortization is not None else "",
        )
        return loan

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def delete_loan(self, loan_id: str, user_id: str) -> bool:
        """Hard-delete the loan; its schedule rows go with it."""
        try:
            result = self.db.execute(
                delete(Loan).where(Loan.id == loan_id, Loan.user_id == user_id)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error deleting loan %s", loan_id)
            raise PersistenceError("Failed to delete loan") from exc

        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info("Loan %s deleted for user %s", loan_id, user_id)
        return deleted

    # ------------------------------------------------------------------
    # Calculator
    # ------------------------------------------------------------------
    @staticmethod
    def preview_amortization(data: AmortizationRequest) -> AmortizationPreview:
        start_date = data.start_date or date.today()
        result = calculate_amortization(
            data.amount, data.interest_rate, data.term_months, data.loan_type
        )
        schedule = assign_payment_dates(result.schedule, start_date)
        return AmortizationPreview(
            monthly_payment=to_money(result.monthly_payment),
            total_interest=to_money(result.total_interest),
            total_amount=to_money(result.total_amount),
            start_date=start_date,
            end_date=add_months(start_date, data.term_months),
            schedule=[
                LoanScheduleItem(
                    payment_number=entry.payment_number,
                    payment_date=entry.payment_date,
                    payment_amount=to_money(entry.payment_amount),
                    principal_paid=to_money(entry.principal_paid),
                    interest_paid=to_money(entry.interest_paid),
                    remaining_balance=to_money(entry.remaining_balance),
                )
                for entry in schedule
            ],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _ensure_not_duplicate(self, user_id, candidate, exclude_loan_id=None):
        match = check_for_duplicate(self.db, user_id, candidate, exclude_loan_id=exclude_loan_id)
        if match is not None:
            logger.info(
                "Duplicate loan rejected for user %s: %s matches %s",
                user_id,
                match.reason.value,
                match.loan.id,
            )
            raise DuplicateLoanError(duplicate_message(match), match)

    @staticmethod
    def _changes_amortization(loan: Loan, changes: dict) -> bool:
        current = {
            "amount": Decimal(loan.principal_amount),
            "interest_rate": Decimal(loan.interest_rate),
            "term_months": loan.term_months,
            "loan_type": loan.loan_type,
            "start_date": loan.start_date,
        }
        for field in AMORTIZATION_FIELDS:
            if changes.get(field) is None:
                continue
            if _column_value(changes[field]) != current[field]:
                return True
        return False

    def _write_schedule(self, loan_id: str, start_date: date, schedule: List[ScheduleEntry]) -> None:
        """
        Replace the loan's persisted schedule with ``schedule``.

        Runs inside the caller's transaction; payment N falls N-1 months after
        ``start_date``.
        """
        self.db.execute(delete(LoanPayment).where(LoanPayment.loan_id == loan_id))
        self.db.add_all(
            [
                LoanPayment(
                    loan_id=loan_id,
                    payment_number=entry.payment_number,
                    payment_date=add_months(start_date, entry.payment_number - 1),
                    payment_amount=to_money(entry.payment_amount),
                    principal_paid=to_money(entry.principal_paid),
                    interest_paid=to_money(entry.interest_paid),
                    remaining_balance=to_money(entry.remaining_balance),
                )
                for entry in schedule
            ]
        )
        self.db.flush()
