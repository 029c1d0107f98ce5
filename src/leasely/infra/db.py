"""Database access layer using psycopg2.

Settlement workers hold a booking row lock for the length of one provider
call, so every connection carries a ``lock_timeout``: a worker stuck behind
another holder gives up on that booking (LockNotAvailable) and the next run
picks it up again.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- txn(): Context manager for short, safe transactions
- fetchone/fetchall: Query helpers
- for_update(): SELECT ... FOR UPDATE helper
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

APPLICATION_NAME = "leasely"
DEFAULT_LOCK_TIMEOUT_MS = 5000


def _lock_timeout_ms() -> int:
    raw = os.environ.get("DB_LOCK_TIMEOUT_MS", "")
    try:
        return int(raw) if raw.strip() else DEFAULT_LOCK_TIMEOUT_MS
    except ValueError:
        raise RuntimeError(f"DB_LOCK_TIMEOUT_MS must be an integer, got {raw!r}") from None


def get_conn() -> PgConnection:
    """Get a new database connection from DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set or DB_LOCK_TIMEOUT_MS is invalid.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return psycopg2.connect(
        dsn,
        application_name=APPLICATION_NAME,
        options=f"-c lock_timeout={_lock_timeout_ms()}",
    )


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception, so a provider error
    raised inside the block leaves the booking row as it was.

    Example:
        with txn() as cur:
            row = for_update(cur, "SELECT id FROM bookings WHERE id = %s", (booking_id,))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row (None if no results)."""
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    cur.execute(query, params)
    return cur.fetchall()


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> tuple[Any, ...] | None:
    """Execute SELECT ... FOR UPDATE and fetch one row.

    The lock is held until the surrounding transaction ends.

    Raises:
        ValueError: If both nowait and skip_locked are True.
    """
    if nowait and skip_locked:
        raise ValueError("Cannot use both nowait and skip_locked")

    suffix = " FOR UPDATE"
    if nowait:
        suffix += " NOWAIT"
    elif skip_locked:
        suffix += " SKIP LOCKED"

    full_query = query.rstrip().rstrip(";") + suffix
    cur.execute(full_query, params)
    return cur.fetchone()
