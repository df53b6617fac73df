from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from kpi_review.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Request handlers run in a threadpool; one connection may cross threads
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, echo=settings.sql_echo, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Request-scoped session. Services own commit and rollback; this only
    guarantees the session is closed.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create every table. Called once from the application lifespan."""
    from kpi_review.models import (
        kpi, item_rating, kpi_review, calculation_config, audit_log
    )
    Base.metadata.create_all(bind=engine)
