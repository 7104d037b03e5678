import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from loan_tracker.config import get_settings
from loan_tracker.exceptions import (
    DuplicateLoanError,
    LoanNotFoundError,
    LoanValidationError,
    PersistenceError,
)
from loan_tracker.init_db import init_db
from loan_tracker.logging_config import setup_logging
from loan_tracker.routers import loans

settings = get_settings()
setup_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="Loan Tracker API")

# Ensure DB is ready even in test contexts without startup events
init_db()

app.include_router(loans.router, prefix="/loans", tags=["loans"])


@app.exception_handler(LoanValidationError)
async def handle_validation_error(request: Request, exc: LoanValidationError):
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.exception_handler(DuplicateLoanError)
async def handle_duplicate_loan(request: Request, exc: DuplicateLoanError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": exc.message,
            "reason": exc.reason,
            "existingLoanId": exc.existing_loan_id,
        },
    )


@app.exception_handler(LoanNotFoundError)
async def handle_not_found(request: Request, exc: LoanNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def handle_persistence_error(request: Request, exc: PersistenceError):
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)}
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    init_db()
