from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from loan_tracker.database import get_db
from loan_tracker.services import LoanService


USER_ID_HEADER = "X-User-Id"


def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header(alias=USER_ID_HEADER)] = None,
) -> str:
    # Identity is established upstream; this layer only requires it to be present.
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not authenticated")
    return x_user_id.strip()


def get_loan_service(db: Session = Depends(get_db)) -> LoanService:
    return LoanService(db)
