from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from loan_tracker.database import Base
from loan_tracker.enums import LoanStatus


def new_id() -> str:
    return str(uuid.uuid4())


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    loan_type: Mapped[str] = mapped_column(String(50))
    principal_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4))
    term_months: Mapped[int] = mapped_column(Integer)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    monthly_payment: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    total_interest: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    outstanding_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    status: Mapped[str] = mapped_column(String(20), default=LoanStatus.ACTIVE.value, index=True)
    lender: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    payments: Mapped[list[LoanPayment]] = relationship(
        "LoanPayment",
        back_populates="loan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="LoanPayment.payment_number",
    )

    @property
    def is_active(self) -> bool:
        return self.status != LoanStatus.PAID_OFF.value

    @property
    def total_amount(self) -> Decimal:
        return self.principal_amount + self.total_interest


class LoanPayment(Base):
    __tablename__ = "loan_payments"
    __table_args__ = (
        UniqueConstraint("loan_id", "payment_number", name="uq_loan_payment_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    loan_id: Mapped[str] = mapped_column(
        ForeignKey("loans.id", ondelete="CASCADE"), index=True
    )
    payment_number: Mapped[int] = mapped_column(Integer)
    payment_date: Mapped[date] = mapped_column(Date, index=True)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    principal_paid: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    interest_paid: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    remaining_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    loan: Mapped[Loan] = relationship("Loan", back_populates="payments")
