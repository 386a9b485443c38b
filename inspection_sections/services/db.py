"""
Database connection manager for the section answer engine.
SQLite, one connection per request.
"""
import logging
import os
import sqlite3
from contextlib import contextmanager

from flask import g, current_app

from inspection_sections.errors import Conflict

logger = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), 'schema.sql')


def get_db():
    """Get database connection for current request."""
    if 'db' not in g:
        db_path = current_app.config['DATABASE_PATH']
        g.db = sqlite3.connect(db_path)
        g.db.row_factory = sqlite3.Row
        # Enable foreign keys
        g.db.execute("PRAGMA foreign_keys = ON")
    return g.db


def close_db(e=None):
    """Close database connection at end of request."""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_db(app):
    """Initialize database with schema if not exists."""
    app.teardown_appcontext(close_db)

    db_path = app.config['DATABASE_PATH']

    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    if not os.path.exists(db_path):
        conn = sqlite3.connect(db_path)
        apply_schema(conn)
        conn.commit()
        conn.close()
        logger.info("Database initialized at %s", db_path)


def apply_schema(conn):
    """Create any missing tables, indexes and triggers."""
    with open(SCHEMA_PATH, 'r') as f:
        conn.executescript(f.read())


@contextmanager
def transaction():
    """
    Run a block of statements as one atomic unit.

    Takes the write lock up front (BEGIN IMMEDIATE) so a read-then-write
    sequence inside the block sees a stable snapshot. Any exception rolls
    everything back; SQLite integrity and locking failures surface as
    Conflict so callers can retry the whole operation.
    """
    db = get_db()
    if db.in_transaction:
        db.commit()
    db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except (sqlite3.IntegrityError, sqlite3.OperationalError) as e:
        db.rollback()
        logger.warning("Transaction rolled back: %s", e)
        raise Conflict('The save could not be completed, please retry',
                       details={'reason': str(e)}) from e
    except Exception:
        db.rollback()
        raise
    else:
        db.commit()
