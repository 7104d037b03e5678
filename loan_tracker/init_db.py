from __future__ import annotations

from sqlalchemy.engine import Engine

import loan_tracker.models  # noqa: F401  registers tables on Base.metadata
from loan_tracker.database import Base, engine


def init_db(bind: Engine = engine) -> None:
    Base.metadata.create_all(bind=bind)
