from __future__ import annotations

from typing import Optional

from sqlalchemy import Engine, create_engine, event, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from config import get_settings
from db.transaction import LOCK_TIMEOUT_OPTION

SQLITE_BUSY_TIMEOUT_MS = 30_000


def build_engine(database_url: str, *, isolation_level: Optional[str] = None) -> Engine:
    """Create an engine whose transactions are safe for admission checks.

    SQLite ignores ``SELECT ... FOR UPDATE``, so pysqlite is switched to manual
    transaction control and every transaction starts with ``BEGIN IMMEDIATE``,
    taking the database write lock before the conflict count runs.

    A connection carrying the ``lock_timeout_ms`` execution option gives up
    waiting for locks after that many milliseconds: PostgreSQL through
    ``SET LOCAL lock_timeout``/``statement_timeout``, SQLite through its busy
    timeout.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            future=True,
            isolation_level=isolation_level or "READ COMMITTED",
        )

        if url.get_backend_name() == "postgresql":

            @event.listens_for(engine, "begin")
            def _bound_lock_wait(conn):
                timeout_ms = conn.get_execution_options().get(LOCK_TIMEOUT_OPTION)
                if timeout_ms is None:
                    return
                conn.exec_driver_sql(f"SET LOCAL lock_timeout = {int(timeout_ms)}")
                conn.exec_driver_sql(f"SET LOCAL statement_timeout = {int(timeout_ms)}")

        return engine

    engine = create_engine(
        database_url,
        future=True,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_MS / 1000},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        # Pooled connections keep their pragma, so reset it on every begin.
        timeout_ms = conn.get_execution_options().get(LOCK_TIMEOUT_OPTION, SQLITE_BUSY_TIMEOUT_MS)
        conn.exec_driver_sql(f"PRAGMA busy_timeout = {int(timeout_ms)}")
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


settings = get_settings()

engine = build_engine(settings.database_url, isolation_level=settings.isolation_level)

SessionLocal = build_session_factory(engine)


def get_session_factory() -> sessionmaker:
    return SessionLocal


def init_db(bind: Optional[Engine] = None) -> None:
    """Bootstrap schema for environments without migrations."""
    from booking.models import Base

    Base.metadata.create_all(bind=bind or engine)


def validate_db_compatibility(bind: Optional[Engine] = None) -> None:
    required_tables = {"organizations", "resources", "resource_slots", "bookings", "unavailabilities"}
    required_columns = {
        "resources": {"organization_id", "capacity", "timezone"},
        "unavailabilities": {"organization_id"},
    }

    inspector = inspect(bind or engine)
    existing_tables = set(inspector.get_table_names())
    missing_tables = sorted(required_tables - existing_tables)

    missing_column_msgs: list[str] = []
    for table_name, columns in required_columns.items():
        if table_name not in existing_tables:
            continue
        existing_columns = {col["name"] for col in inspector.get_columns(table_name)}
        missing_columns = sorted(columns - existing_columns)
        if missing_columns:
            missing_column_msgs.append(f"{table_name}: {', '.join(missing_columns)}")

    if not missing_tables and not missing_column_msgs:
        return

    details: list[str] = []
    if missing_tables:
        details.append(f"missing tables [{', '.join(missing_tables)}]")
    if missing_column_msgs:
        details.append(f"missing columns [{'; '.join(missing_column_msgs)}]")

    raise RuntimeError(
        "Database compatibility check failed: "
        + "; ".join(details)
        + ". Apply required migrations before starting the API."
    )
