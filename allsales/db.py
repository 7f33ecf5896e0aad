import logging
import sqlite3

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError

from allsales.exceptions import ValidationException
from allsales.utils import now_utc  # noqa: F401  re-exported for models

# Retrieve main logger
logger = logging.getLogger("main")

db = SQLAlchemy()

# Backends with an ON CONFLICT insert, needed by the blacklist upsert
UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite pragmas for concurrent readers and writers"""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def check_database_url(database_url):
    """Reject URLs that do not parse or name a backend without upsert support"""
    try:
        backend = make_url(database_url).get_backend_name()
    except ArgumentError as e:
        raise ValidationException(f"Invalid DATABASE_URL: {e}")
    if backend not in UPSERT_INSERTS:
        raise ValidationException(
            f"Unsupported database backend '{backend}', use one of: {', '.join(sorted(UPSERT_INSERTS))}"
        )
    return backend


def engine_options(database_url, pool_size=10, max_overflow=5):
    """SQLAlchemy engine options for the configured backend"""
    if database_url.startswith("sqlite"):
        # Workers share the file database from several threads
        return {"connect_args": {"timeout": 30, "check_same_thread": False}}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
    }


def dialect_insert(table):
    """INSERT construct supporting ON CONFLICT for the bound dialect"""
    return UPSERT_INSERTS[db.session.get_bind().dialect.name](table)


def init_db():
    """Create missing tables. Must run inside an app context."""
    import allsales.models  # noqa: F401  registers the tables

    db.create_all()
    logger.info("Database tables verified")
