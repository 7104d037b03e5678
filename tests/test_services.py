from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from loan_tracker import services as services_module
from loan_tracker.enums import DuplicateReason, LoanStatus, LoanType
from loan_tracker.exceptions import (
    DuplicateLoanError,
    LoanNotFoundError,
    LoanValidationError,
    PersistenceError,
)
from loan_tracker.models import Loan, LoanPayment
from loan_tracker.schemas import AmortizationRequest, LoanCreate, LoanUpdate


def car_loan(**overrides):
    fields = dict(
        name="Car Loan",
        loan_type=LoanType.CAR,
        amount=Decimal("500000"),
        interest_rate=Decimal("9.5"),
        term_months=60,
        start_date=date(2025, 1, 15),
        lender="SBI",
    )
    fields.update(overrides)
    return LoanCreate(**fields)


def count(db_session, model, **filters):
    statement = select(func.count()).select_from(model)
    for column, value in filters.items():
        statement = statement.where(getattr(model, column) == value)
    return db_session.scalar(statement)


def test_create_loan_persists_terms_and_schedule(service, db_session, user_id):
    loan = service.create_loan(
        user_id,
        LoanCreate(
            name="Personal",
            loan_type=LoanType.PERSONAL,
            amount=Decimal("100000"),
            interest_rate=Decimal("12"),
            term_months=12,
            start_date=date(2025, 1, 15),
        ),
    )

    assert loan.id
    assert loan.user_id == user_id
    assert loan.monthly_payment == Decimal("8884.88")
    assert loan.total_interest == Decimal("6618.55")
    assert loan.total_amount == Decimal("106618.55")
    assert loan.outstanding_balance == Decimal("100000.00")
    assert loan.status == LoanStatus.ACTIVE.value
    assert loan.is_active
    assert loan.end_date == date(2026, 1, 15)

    schedule = service.get_loan_amortization(loan.id, user_id)
    assert [p.payment_number for p in schedule] == list(range(1, 13))
    assert schedule[0].payment_date == date(2025, 1, 15)
    assert schedule[-1].payment_date == date(2025, 12, 15)
    assert schedule[-1].remaining_balance == Decimal("0.00")
    assert schedule[0].interest_paid == Decimal("1000.00")


def test_create_interest_only_loan(service, user_id):
    loan = service.create_loan(
        user_id,
        car_loan(
            name="Gold",
            loan_type=LoanType.GOLD,
            amount=Decimal("100000"),
            interest_rate=Decimal("12"),
            term_months=6,
        ),
    )

    assert loan.monthly_payment == Decimal("1000.00")
    schedule = service.get_loan_amortization(loan.id, user_id)
    assert len(schedule) == 6
    assert all(p.principal_paid == 0 for p in schedule)
    assert all(p.remaining_balance == Decimal("100000.00") for p in schedule)


def test_create_rejects_exact_duplicate_without_writing(service, db_session, user_id):
    service.create_loan(user_id, car_loan())

    with pytest.raises(DuplicateLoanError) as excinfo:
        service.create_loan(user_id, car_loan())

    assert excinfo.value.reason == DuplicateReason.EXACT_DUPLICATE.value
    assert "identical details" in str(excinfo.value)
    assert count(db_session, Loan, user_id=user_id) == 1
    assert count(db_session, LoanPayment) == 60


def test_create_rejects_similar_and_same_name_lender(service, user_id):
    existing = service.create_loan(user_id, car_loan())

    with pytest.raises(DuplicateLoanError) as similar:
        service.create_loan(
            user_id,
            car_loan(amount=Decimal("520000"), interest_rate=Decimal("10"), term_months=48),
        )
    with pytest.raises(DuplicateLoanError) as same:
        service.create_loan(user_id, car_loan(amount=Decimal("2000000")))

    assert similar.value.reason == DuplicateReason.SIMILAR_LOAN.value
    assert same.value.reason == DuplicateReason.SAME_NAME_LENDER.value
    assert same.value.existing_loan_id == existing.id


def test_create_accepts_distinct_loan(service, user_id):
    service.create_loan(user_id, car_loan())
    other = service.create_loan(
        user_id, car_loan(name="Home Loan", loan_type=LoanType.HOME, lender="HDFC")
    )

    assert other.name == "Home Loan"
    assert len(service.get_user_loans(user_id)) == 2


def test_duplicates_are_per_user(service, user_id):
    service.create_loan(user_id, car_loan())

    assert service.create_loan("another-user", car_loan()).user_id == "another-user"


def test_paid_off_loan_does_not_block_recreation(service, user_id):
    loan = service.create_loan(user_id, car_loan())
    service.update_loan(loan.id, user_id, LoanUpdate(status=LoanStatus.PAID_OFF))

    again = service.create_loan(user_id, car_loan())

    assert again.id != loan.id


def test_create_rejects_out_of_range_terms(service, db_session, user_id):
    # Skips request validation to reach the service-level bounds
    fields = car_loan().model_dump()
    fields["amount"] = Decimal("1000000000.01")

    with pytest.raises(LoanValidationError):
        service.create_loan(user_id, LoanCreate.model_construct(**fields))

    assert count(db_session, Loan) == 0


def test_get_user_loans_newest_first(service, db_session, user_id):
    first = service.create_loan(user_id, car_loan(name="First", lender="A"))
    first.created_at = datetime(2024, 1, 1)
    db_session.commit()
    second = service.create_loan(user_id, car_loan(name="Second", lender="B"))

    assert [loan.id for loan in service.get_user_loans(user_id)] == [second.id, first.id]
    assert service.get_user_loans("nobody") == []


def test_ownership_isolation(service, db_session, user_id):
    loan = service.create_loan(user_id, car_loan())

    with pytest.raises(LoanNotFoundError):
        service.get_loan_by_id(loan.id, "intruder")
    with pytest.raises(LoanNotFoundError):
        service.get_loan_amortization(loan.id, "intruder")
    with pytest.raises(LoanNotFoundError):
        service.update_loan(loan.id, "intruder", LoanUpdate(notes="mine now"))
    assert service.delete_loan(loan.id, "intruder") is False

    assert service.get_loan_by_id(loan.id, user_id).notes is None
    assert count(db_session, LoanPayment, loan_id=loan.id) == 60


def test_unknown_loan_is_not_found(service, user_id):
    with pytest.raises(LoanNotFoundError):
        service.get_loan_by_id("missing", user_id)
    with pytest.raises(LoanNotFoundError):
        service.get_loan_amortization("missing", user_id)
    assert service.delete_loan("missing", user_id) is False


def test_delete_cascades_to_schedule(service, db_session, user_id):
    loan = service.create_loan(user_id, car_loan())

    assert service.delete_loan(loan.id, user_id) is True

    assert count(db_session, Loan, id=loan.id) == 0
    assert count(db_session, LoanPayment, loan_id=loan.id) == 0


def test_notes_update_skips_duplicate_check_and_schedule(service, db_session, user_id, monkeypatch):
    loan = service.create_loan(user_id, car_loan())
    payment_ids = [p.id for p in service.get_loan_amortization(loan.id, user_id)]
    created_updated_at = loan.updated_at

    def fail(*args, **kwargs):
        raise AssertionError("duplicate check should not run")

    monkeypatch.setattr(services_module, "check_for_duplicate", fail)
    updated = service.update_loan(loan.id, user_id, LoanUpdate(notes="Refinance next year"))

    assert updated.notes == "Refinance next year"
    assert updated.updated_at >= created_updated_at
    assert [p.id for p in service.get_loan_amortization(loan.id, user_id)] == payment_ids


def test_rate_update_regenerates_schedule(service, db_session, user_id):
    loan = service.create_loan(user_id, car_loan())
    old_payment = loan.monthly_payment

    updated = service.update_loan(loan.id, user_id, LoanUpdate(interest_rate=Decimal("11.25")))

    assert updated.interest_rate == Decimal("11.25")
    assert updated.monthly_payment > old_payment
    schedule = service.get_loan_amortization(loan.id, user_id)
    assert len(schedule) == 60
    assert count(db_session, LoanPayment, loan_id=loan.id) == 60
    assert all(p.payment_amount == updated.monthly_payment for p in schedule)
    assert schedule[-1].remaining_balance == Decimal("0.00")


def test_term_update_moves_end_date_and_resizes_schedule(service, user_id):
    loan = service.create_loan(user_id, car_loan())

    updated = service.update_loan(loan.id, user_id, LoanUpdate(term_months=36))

    assert updated.end_date == date(2028, 1, 15)
    assert len(service.get_loan_amortization(loan.id, user_id)) == 36


def test_start_date_update_redates_schedule(service, user_id):
    loan = service.create_loan(user_id, car_loan(term_months=12))

    updated = service.update_loan(loan.id, user_id, LoanUpdate(start_date=date(2025, 3, 1)))

    assert updated.end_date == date(2026, 3, 1)
    schedule = service.get_loan_amortization(loan.id, user_id)
    assert schedule[0].payment_date == date(2025, 3, 1)
    assert schedule[-1].payment_date == date(2026, 2, 1)


def test_amount_update_resets_outstanding_balance(service, user_id):
    loan = service.create_loan(user_id, car_loan())

    updated = service.update_loan(loan.id, user_id, LoanUpdate(amount=Decimal("450000")))

    assert updated.principal_amount == Decimal("450000.00")
    assert updated.outstanding_balance == Decimal("450000.00")


def test_loan_type_update_switches_to_interest_only(service, user_id):
    loan = service.create_loan(user_id, car_loan(amount=Decimal("120000"), interest_rate=Decimal("12")))

    updated = service.update_loan(loan.id, user_id, LoanUpdate(loan_type=LoanType.GOLD))

    assert updated.loan_type == LoanType.GOLD.value
    assert updated.monthly_payment == Decimal("1200.00")
    assert all(p.principal_paid == 0 for p in service.get_loan_amortization(loan.id, user_id))


def test_unchanged_terms_do_not_regenerate(service, user_id):
    loan = service.create_loan(user_id, car_loan())
    payment_ids = [p.id for p in service.get_loan_amortization(loan.id, user_id)]

    service.update_loan(loan.id, user_id, LoanUpdate(interest_rate=Decimal("9.5"), term_months=60))

    assert [p.id for p in service.get_loan_amortization(loan.id, user_id)] == payment_ids


def test_update_does_not_conflict_with_itself(service, user_id):
    loan = service.create_loan(user_id, car_loan())

    updated = service.update_loan(loan.id, user_id, LoanUpdate(name="car loan", lender="SBI"))

    assert updated.name == "car loan"


def test_update_into_another_loan_is_duplicate(service, user_id):
    service.create_loan(user_id, car_loan())
    other = service.create_loan(
        user_id, car_loan(name="Home Loan", loan_type=LoanType.HOME, lender="HDFC")
    )

    with pytest.raises(DuplicateLoanError):
        service.update_loan(other.id, user_id, LoanUpdate(name="Car Loan", lender="SBI"))

    assert service.get_loan_by_id(other.id, user_id).name == "Home Loan"


def test_update_rejects_invalid_merged_terms(service, user_id):
    loan = service.create_loan(user_id, car_loan(loan_type=LoanType.PERSONAL))

    with pytest.raises(LoanValidationError):
        service.update_loan(
            loan.id, user_id, LoanUpdate.model_construct(amount=Decimal("1000000000.01"))
        )


def test_status_is_stored_in_full(service, user_id):
    loan = service.create_loan(user_id, car_loan())

    defaulted = service.update_loan(loan.id, user_id, LoanUpdate(status=LoanStatus.DEFAULTED))
    assert defaulted.status == LoanStatus.DEFAULTED.value
    assert defaulted.is_active

    paid = service.update_loan(loan.id, user_id, LoanUpdate(status=LoanStatus.PAID_OFF))
    assert paid.status == LoanStatus.PAID_OFF.value
    assert not paid.is_active


def test_summary_tracks_cumulative_totals(service, user_id):
    loan = service.create_loan(
        user_id,
        car_loan(amount=Decimal("100000"), interest_rate=Decimal("12"), term_months=12),
    )

    first = service.get_loan_summary(loan.id, user_id, 1)
    last = service.get_loan_summary(loan.id, user_id, 12)

    assert first.total_interest_paid == Decimal("1000.00")
    assert first.payments_remaining == 11
    assert last.principal_balance == Decimal("0.00")
    assert last.payments_remaining == 0
    assert abs(last.total_principal_paid - Decimal("100000.00")) <= Decimal("0.05")
    assert abs(last.total_interest_paid - Decimal("6618.55")) <= Decimal("0.05")

    with pytest.raises(LoanValidationError):
        service.get_loan_summary(loan.id, user_id, 13)


def test_schedule_write_failure_rolls_back_loan(service, db_session, user_id, monkeypatch):
    def broken_write(*args, **kwargs):
        raise OperationalError("INSERT INTO loan_payments", {}, Exception("disk full"))

    monkeypatch.setattr(service, "_write_schedule", broken_write)

    with pytest.raises(PersistenceError):
        service.create_loan(user_id, car_loan())

    assert count(db_session, Loan) == 0


def test_failed_regeneration_keeps_old_terms(service, db_session, user_id, monkeypatch):
    loan = service.create_loan(user_id, car_loan())
    loan_id = loan.id

    def broken_write(*args, **kwargs):
        raise OperationalError("DELETE FROM loan_payments", {}, Exception("lock timeout"))

    monkeypatch.setattr(service, "_write_schedule", broken_write)

    with pytest.raises(PersistenceError):
        service.update_loan(loan_id, user_id, LoanUpdate(interest_rate=Decimal("14")))

    reloaded = service.get_loan_by_id(loan_id, user_id)
    assert reloaded.interest_rate == Decimal("9.5")
    assert count(db_session, LoanPayment, loan_id=loan_id) == 60


def test_preview_amortization_dates_schedule():
    preview = services_module.LoanService.preview_amortization(
        AmortizationRequest(
            amount=Decimal("100000"),
            interest_rate=Decimal("12"),
            term_months=12,
            start_date=date(2025, 1, 31),
        )
    )

    assert preview.monthly_payment == Decimal("8884.88")
    assert preview.end_date == date(2026, 1, 31)
    assert preview.schedule[1].payment_date == date(2025, 2, 28)
    assert preview.schedule[-1].remaining_balance == Decimal("0.00")
