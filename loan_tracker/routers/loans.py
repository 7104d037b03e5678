from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from loan_tracker.deps import get_current_user_id, get_loan_service
from loan_tracker.schemas import (
    AmortizationPreview,
    AmortizationRequest,
    DuplicateLoanOut,
    LoanCreate,
    LoanOut,
    LoanScheduleItem,
    LoanSummary,
    LoanUpdate,
)
from loan_tracker.services import LoanService

router = APIRouter()


@router.post(
    "/",
    response_model=LoanOut,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"model": DuplicateLoanOut}},
)
def create_loan(
    payload: LoanCreate,
    user_id: str = Depends(get_current_user_id),
    service: LoanService = Depends(get_loan_service),
):
    return service.create_loan(user_id, payload)


@router.get("/", response_model=List[LoanOut])
def list_loans(
    user_id: str = Depends(get_current_user_id),
    service: LoanService = Depends(get_loan_service),
):
    return service.get_user_loans(user_id)


@router.post("/calculate", response_model=AmortizationPreview)
def calculate(payload: AmortizationRequest):
    """Amortization for arbitrary terms; nothing is saved."""
    return LoanService.preview_amortization(payload)


@router.get("/{loan_id}", response_model=LoanOut)
def get_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user_id),
    service: LoanService = Depends(get_loan_service),
):
    return service.get_loan_by_id(loan_id, user_id)


@router.put(
    "/{loan_id}",
    response_model=LoanOut,
    responses={status.HTTP_409_CONFLICT: {"model": DuplicateLoanOut}},
)
def update_loan(
    loan_id: str,
    payload: LoanUpdate,
    user_id: str = Depends(get_current_user_id),
    service: LoanService = Depends(get_loan_service),
):
    return service.update_loan(loan_id, user_id, payload)


@router.delete("/{loan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user_id),
    service: LoanService = Depends(get_loan_service),
):
    if not service.delete_loan(loan_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Loan not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{loan_id}/amortization", response_model=List[LoanScheduleItem])
def get_amortization(
    loan_id: str,
    user_id: str = Depends(get_current_user_id),
    service: LoanService = Depends(get_loan_service),
):
    return service.get_loan_amortization(loan_id, user_id)


@router.get("/{loan_id}/summary", response_model=LoanSummary)
def get_summary(
    loan_id: str = Path(..., min_length=1),
    month: int = Query(..., gt=0),
    user_id: str = Depends(get_current_user_id),
    service: LoanService = Depends(get_loan_service),
):
    return service.get_loan_summary(loan_id, user_id, month)
