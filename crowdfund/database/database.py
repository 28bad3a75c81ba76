from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import structlog
import time

from crowdfund.models.base import Base

logger = structlog.get_logger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for the configured URL"""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # a single shared connection keeps the in-memory database alive
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        pool_size=20,
        max_overflow=30,
        pool_pre_ping=True,
        pool_recycle=300,
        echo=False,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def wait_for_db(engine: Engine, max_retries: int = 30, delay: float = 2):
    """Wait for database to be available with retries"""
    for attempt in range(max_retries):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection established")
            return True
        except Exception as e:
            logger.warning(
                "Database connection attempt failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
            if attempt < max_retries - 1:
                time.sleep(delay)
            else:
                logger.error("Failed to connect to database after all retries")
                raise
    return False


def init_db(engine: Engine):
    """Initialize database tables"""
    try:
        wait_for_db(engine)
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to create database tables", error=str(e))
        raise


def check_db(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return False


def close_db(engine: Engine):
    """Close database connection"""
    engine.dispose()
    logger.info("Database connection closed")


@contextmanager
def session_scope(session_factory: sessionmaker):
    """Provide a transactional scope around a series of operations"""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
