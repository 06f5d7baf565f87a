"""
core/db.py -- Shared SQLAlchemy Core engine factory and schema registry.

Every store (auth/store.py, fleet/store.py, audit/recorder.py) declares its
Table objects on the single `metadata` defined here. Sharing one MetaData and
one Engine is what lets a business mutation and its audit entry run on the same
connection and commit together.

Usage:
    engine = make_engine("sqlite:///urbanfleet.db")
    store = FleetStore(engine)        # creates its tables on first use
    with engine.connect() as conn:
        ...
        conn.commit()

Layer rule: core/ is the kernel and imports nothing from the other packages.
"""

from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine for db_url.

    SQLite engines get check_same_thread=False (FastAPI runs sync handlers in
    a thread pool) and the WAL listener.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    """Current UTC instant as a fixed-width ISO 8601 string (sortable as text)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_iso(value: datetime) -> str:
    """value as a fixed-width UTC ISO 8601 string. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
