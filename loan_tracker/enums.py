"""Enumeration types for loans."""

from enum import Enum


class LoanType(str, Enum):
    PERSONAL = "Personal Loan"
    HOME = "Home Loan"
    CAR = "Car Loan"
    BUSINESS = "Business Loan"
    GOLD = "Gold Loan"
    EDUCATION = "Education Loan"
    PRIVATE_MONEY_LENDING = "Private Money Lending"
    OTHER = "Other"


# Scheduled payments cover interest only; principal is settled outside the schedule.
INTEREST_ONLY_LOAN_TYPES = frozenset(
    {LoanType.GOLD, LoanType.PRIVATE_MONEY_LENDING, LoanType.OTHER}
)


class LoanStatus(str, Enum):
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    DEFAULTED = "defaulted"
    REFINANCED = "refinanced"


class DuplicateReason(str, Enum):
    EXACT_DUPLICATE = "exact_duplicate"
    SIMILAR_LOAN = "similar_loan"
    SAME_NAME_LENDER = "same_name_lender"
