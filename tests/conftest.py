import os
import uuid

# Must be set before loan_tracker.database builds its engine.
os.environ.setdefault("LOAN_TRACKER_DATABASE_URL", "sqlite:///./test_loan_tracker.db")

import pytest
from sqlalchemy.orm import sessionmaker

from loan_tracker.database import Base, make_engine
from loan_tracker.services import LoanService


@pytest.fixture
def db_session():
    """Fresh in-memory database per test, foreign keys enforced."""
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def service(db_session):
    return LoanService(db_session)


@pytest.fixture
def user_id():
    return f"user-{uuid.uuid4()}"
