from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, condecimal
from pydantic.alias_generators import to_camel

from loan_tracker.enums import LoanStatus, LoanType


Money = condecimal(max_digits=18, decimal_places=2)
Rate = condecimal(max_digits=7, decimal_places=4)  # percentage, e.g. 6.5 means 6.5%


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class LoanCreate(CamelModel):
    name: str = Field(..., min_length=1)
    loan_type: LoanType
    amount: Money = Field(..., gt=0, le=1_000_000_000)
    interest_rate: Rate = Field(..., ge=0, le=50)
    term_months: PositiveInt
    start_date: date
    lender: Optional[str] = None
    account_number: Optional[str] = None
    notes: Optional[str] = None


class LoanUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    loan_type: Optional[LoanType] = None
    amount: Optional[Money] = Field(None, gt=0, le=1_000_000_000)
    interest_rate: Optional[Rate] = Field(None, ge=0, le=50)
    term_months: Optional[PositiveInt] = None
    start_date: Optional[date] = None
    status: Optional[LoanStatus] = None
    lender: Optional[str] = None
    account_number: Optional[str] = None
    notes: Optional[str] = None


class LoanOut(CamelModel):
    id: str
    user_id: str
    name: str
    loan_type: LoanType
    amount: Money = Field(validation_alias="principal_amount")
    interest_rate: Rate
    term_months: PositiveInt
    start_date: date
    end_date: date
    monthly_payment: Money
    total_interest: Money
    total_amount: Money
    remaining_balance: Money = Field(validation_alias="outstanding_balance")
    status: LoanStatus
    lender: Optional[str] = None
    account_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class LoanScheduleItem(CamelModel):
    payment_number: PositiveInt
    payment_date: date
    payment_amount: Money
    principal_paid: Money
    interest_paid: Money
    remaining_balance: Money


class LoanSummary(CamelModel):
    month: PositiveInt
    payment_date: date
    principal_balance: Money
    total_principal_paid: Money
    total_interest_paid: Money
    payments_remaining: int


class AmortizationRequest(CamelModel):
    amount: Money = Field(..., gt=0, le=1_000_000_000)
    interest_rate: Rate = Field(..., ge=0, le=50)
    term_months: PositiveInt
    loan_type: LoanType = LoanType.PERSONAL
    start_date: Optional[date] = None


class AmortizationPreview(CamelModel):
    monthly_payment: Money
    total_interest: Money
    total_amount: Money
    start_date: date
    end_date: date
    schedule: List[LoanScheduleItem]


class DuplicateLoanOut(CamelModel):
    detail: str
    reason: str
    existing_loan_id: str
