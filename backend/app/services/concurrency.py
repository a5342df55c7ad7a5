# Overview: Transaction boundaries and retry helpers shared by the services.

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError


def begin_write_transaction(session: Session) -> None:
    """
    Open the session's transaction as a writer.

    SQLite: issue BEGIN IMMEDIATE so the write lock is taken up front and
    concurrent writers wait on busy_timeout instead of failing halfway through
    with "database is locked". Other dialects start a normal transaction;
    their row-level locking plus conditional UPDATEs do the work.
    """
    connection = session.connection()
    if connection.dialect.name != "sqlite":
        return
    # Already writing (pending flushes in this session): keep that transaction
    if connection.connection.dbapi_connection.in_transaction:
        return
    session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def atomic(session: Session, *, write: bool = True) -> Iterator[Session]:
    """
    Run a block in one transaction: commit on success, roll back and re-raise
    on any exception. Nothing from a failed block is ever visible.

    write=False skips BEGIN IMMEDIATE; the database takes the write lock at
    the first INSERT/UPDATE instead.
    """
    if write:
        begin_write_transaction(session)
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def run_with_retry(session: Session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locked database) and StaleDataError
    (optimistic version_id conflicts). Business errors propagate at once.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
