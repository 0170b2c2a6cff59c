# backend/database.py
import logging
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.config import get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# SQLAlchemy Engine and Session
# ---------------------------------------------------------------------
settings = get_settings()
DB_URL = settings.database_url


def build_engine(url: str):
    """Create an engine; pool sizing only applies to server databases."""
    if url.startswith("sqlite"):
        return create_engine(url, future=True)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        future=True
    )


engine = build_engine(DB_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

# ---------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------
def create_tables(bind=None):
    """Create all defined tables."""
    import backend.models  # noqa: F401  (register mappers)

    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ All database tables created or verified.")

def get_db():
    """FastAPI dependency: yield a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# ---------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------
if __name__ == "__main__":
    create_tables()
