from contextlib import contextmanager
from typing import Any, Dict, Iterable

from sqlalchemy import JSON, create_engine, inspect, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from admissions.core.config import settings
from admissions.core.exceptions import InternalError


def create_db_engine(database_url: str):
    """Build an engine; pool sizing only applies to server databases"""
    if database_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        echo=False
    )


engine = create_db_engine(settings.database_url)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Declarative base shared by every model
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(postgresql.JSONB(), "postgresql")

# Request-scoped session dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """One pipeline mutation = one transaction: commit, or roll back and re-raise"""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def dialect_insert(db: Session, model):
    """INSERT construct that supports ON CONFLICT on the bound dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise InternalError(f"Upserts are not supported on the '{dialect}' dialect.")


def update_columns(db: Session, model, row_id: int, values: Dict[str, Any], allowed: Iterable[str]) -> int:
    """Parameterized UPDATE restricted to an explicit column allowlist"""
    allowed = set(allowed)
    rejected = sorted(set(values) - allowed)
    if rejected:
        raise ValueError(f"Columns not allowed for {model.__tablename__}: {', '.join(rejected)}")
    if not values:
        return 0
    result = db.execute(
        update(model)
        .where(model.id == row_id)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


def ensure_pipeline_ready(db: Session) -> None:
    """Fail fast when the admissions schema has not been migrated"""
    if not inspect(db.get_bind()).has_table("program_applications"):
        raise InternalError(
            "program_applications table is missing. Run the required migration before using this endpoint."
        )


# Database connectivity check
def check_db_connection(bind=None):
    """Return the database connection status"""
    try:
        with (bind or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
            return {"status": "connected", "message": "Database connection succeeded"}
    except Exception as e:
        return {"status": "error", "message": f"Database connection failed: {str(e)}"}
