"""
Database connection and session management
"""
from sqlalchemy import create_engine, pool, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from stockbridge.config import settings


def _engine_kwargs(url: str) -> dict:
    """Pool/connect options per backend. SQLite is used for local runs and tests."""
    if url.startswith("sqlite"):
        return {
            "poolclass": pool.StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "poolclass": pool.QueuePool,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,  # Verify connections before using
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "connect_args": {
            "connect_timeout": 10,
            "options": "-c statement_timeout=120000",  # 2 minute default query timeout
        },
    }


engine = create_engine(
    settings.database_connection_string,
    echo=settings.DEBUG,
    **_engine_kwargs(settings.database_connection_string),
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """
    Dependency for FastAPI to get database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def set_transaction_timeout(db: Session, timeout_ms: int) -> None:
    """
    Raise the statement timeout for the current transaction only.
    No-op on backends without statement_timeout (SQLite).
    """
    if is_postgres(db):
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

