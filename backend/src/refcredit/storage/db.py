"""Database connection and session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from refcredit.logging_config import get_logger
from refcredit.settings import settings

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _register_models() -> None:
    """Import every model module so its tables are attached to Base.metadata."""
    import refcredit.auth.models  # noqa: F401
    import refcredit.purchases.models  # noqa: F401
    import refcredit.referral.models  # noqa: F401


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
        """
        self.database_url = database_url or settings.database_url
        self.is_sqlite = self.database_url.startswith("sqlite")

        connect_args = {}
        if self.is_sqlite:
            connect_args = {
                "check_same_thread": False,
                "timeout": settings.db_busy_timeout_seconds,
            }

        self.engine = create_engine(
            self.database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

        if self.is_sqlite:
            self._serialize_sqlite_writers()

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.database_url)

    def _serialize_sqlite_writers(self) -> None:
        """Start every SQLite transaction with BEGIN IMMEDIATE.

        SQLite has no row locks, so SELECT ... FOR UPDATE is a no-op there.
        Taking the write lock up front makes concurrent read-modify-write
        transactions queue on the busy timeout instead of interleaving.
        """

        @event.listens_for(self.engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(self.engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    def create_tables(self) -> None:
        """Create all tables in the database."""
        _register_models()
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        _register_models()
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()
