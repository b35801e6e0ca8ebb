# pikotunnel/database/session.py
"""
Database Session Management
"""

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import logging

from pikotunnel.config import settings
from .models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL

    SQLite gets WAL journaling and foreign keys; the worker thread and the
    request threads share one connection pool, hence check_same_thread=False.
    """
    if database_url.startswith("sqlite"):
        kwargs = {}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        db_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
            **kwargs,
        )

        @event.listens_for(db_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return db_engine

    # PostgreSQL or other databases
    return create_engine(
        database_url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autoflush=False,
        expire_on_commit=False,
        bind=bind
    )


def init_db(bind: Engine) -> None:
    """
    Initialize database tables
    Call this on application startup
    """
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=bind)
    logger.info("Database initialized successfully")


class DatabaseManager:
    """
    Database manager for health and maintenance operations
    """

    def __init__(self, bind: Engine):
        self.bind = bind

    def check_connection(self) -> bool:
        """Check if database connection is healthy"""
        try:
            with self.bind.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def get_table_stats(self) -> dict:
        """Get row counts for all tables"""
        with self.bind.connect() as conn:
            return {
                table: conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
                for table in Base.metadata.tables.keys()
            }
