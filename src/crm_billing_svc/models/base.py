from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from crm_billing_svc.config import get_settings

Base = declarative_base()


@lru_cache()
def get_engine() -> Engine:
    """Create the engine for the configured database URL."""
    database_url = get_settings().database_url
    connect_args = {}
    if database_url.startswith("sqlite"):
        # FastAPI runs sync work on a thread pool
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


def get_db() -> Iterator[Session]:
    """Yield a session for the duration of one request."""
    session_factory = sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
