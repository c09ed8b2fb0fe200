"""
Engine and session management.

One engine and one session factory per process. Services receive a
``Session`` and own their commits; ``session_scope`` and the FastAPI
``get_db`` dependency wrap a unit of work for everything else.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import Engine, create_engine as sa_create_engine, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def _engine_options(url: str, settings: Settings) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # In-memory databases exist per connection; share a single one
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


def create_engine(database_url: Optional[str] = None) -> Engine:
    """
    Build an engine for ``database_url``, or the configured URL.

    PostgreSQL gets a pre-pinged, recycled connection pool.
    """
    settings = get_settings()
    url = database_url or settings.database_url
    engine = sa_create_engine(url, echo=settings.debug, **_engine_options(url, settings))
    logger.info("Database engine created", dialect=engine.dialect.name)
    return engine


def _new_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Committed objects keep their loaded state
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=True)


def get_engine() -> Engine:
    """
    The process-wide engine, created on first use.

    Raises:
        RuntimeError: If the engine cannot be created
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except Exception as e:
            logger.error("Engine creation failed", error=str(e), error_type=type(e).__name__)
            raise RuntimeError(f"Database engine initialization failed: {e}") from e
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory

    if _session_factory is None:
        _session_factory = _new_session_factory(get_engine())
    return _session_factory


def configure_engine(engine: Engine) -> None:
    """Install ``engine`` as the process-wide engine (tests, scripts)."""
    global _engine, _session_factory

    _engine = engine
    _session_factory = _new_session_factory(engine)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on success, rolls back and re-raises on failure, and always
    closes the session.
    """
    session = get_session_factory()()

    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(
            "Database session rolled back",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database session injection.

    Example:
        @router.get("/orders/{number}")
        def show(number: str, db: Session = Depends(get_db)):
            ...
    """
    with session_scope() as session:
        yield session


def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Whether the database answers a trivial query.

    Connection errors are retried with exponential backoff starting at
    ``retry_delay`` seconds; any other SQLAlchemy error fails at once.
    """
    for attempt in range(max_retries):
        try:
            with get_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.debug("Database health check passed", attempt=attempt + 1)
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
            if attempt < max_retries - 1:
                time.sleep(retry_delay * (2**attempt))
        except SQLAlchemyError as e:
            logger.error(
                "Database health check aborted",
                attempt=attempt + 1,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    logger.error("Database unreachable", max_retries=max_retries)
    return False
