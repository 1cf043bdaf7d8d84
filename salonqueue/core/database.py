# File: database.py
# Path: salonqueue/core/database.py

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from salonqueue.core.config import settings

# Shared declarative base for all models
Base = declarative_base()


def enable_sqlite_savepoints(sqlite_engine):
    """
    pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT.
    Hand transaction control back to SQLAlchemy for SQLite engines.
    """
    @event.listens_for(sqlite_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


def _build_engine():
    url = settings.DATABASE_URL
    if url.startswith("sqlite"):
        return enable_sqlite_savepoints(create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=settings.database_echo,
        ))

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=300,
        pool_timeout=settings.db_pool_timeout,
        connect_args={
            # Every statement carries a server-side timeout
            "options": f"-c timezone=utc -c statement_timeout={settings.db_statement_timeout_ms}",
            "connect_timeout": 5,
            "application_name": "SalonQueueBackend"
        },
        echo=settings.database_echo
    )


engine = _build_engine()

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

def get_db():
    """
    Dependency function for FastAPI endpoints.
    Creates a new database session for each request.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

def check_database_connection():
    """
    Test database connection health.
    Returns True if connection is successful, False otherwise.
    """
    import logging
    from sqlalchemy import text
    logger = logging.getLogger(__name__)

    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {str(e)}")
        return False
