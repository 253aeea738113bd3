"""
Lazy connect-once access to the database.

The first request that needs the database establishes the connection; requests
arriving while that attempt is in flight wait on the same attempt instead of
opening their own. A failed attempt is reported to everyone waiting on it and
then forgotten, so the next request retries.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Optional

from weatherio.db import Database
from weatherio.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Hands out a single shared `Database`, connecting on first use."""

    def __init__(self, connect: Callable[[], Database]):
        self._connect = connect
        self._lock = threading.Lock()
        self._pending: Optional[Future] = None
        self._database: Optional[Database] = None

    @property
    def connected(self) -> bool:
        return self._database is not None

    def get(self) -> Database:
        database = self._database
        if database is not None:
            return database

        with self._lock:
            if self._database is not None:
                return self._database
            pending = self._pending
            owner = pending is None
            if owner:
                pending = self._pending = Future()

        if owner:
            self._establish(pending)
        return pending.result()

    def _establish(self, pending: Future) -> None:
        try:
            database = self._connect()
        except Exception as exc:
            logger.error("Database connect failed: %s", exc)
            if isinstance(exc, DatabaseConnectionError):
                error = exc
            else:
                error = DatabaseConnectionError(f"Database connection failed: {exc}")
                error.__cause__ = exc
            with self._lock:
                self._pending = None
            pending.set_exception(error)
            return
        except BaseException:
            with self._lock:
                self._pending = None
            pending.set_exception(DatabaseConnectionError("Database connection interrupted"))
            raise

        with self._lock:
            self._database = database
            self._pending = None
        logger.info("Database connected (%s)", type(database).__name__)
        pending.set_result(database)

    def close(self) -> None:
        """Dispose the current connection; the next `get` reconnects."""
        with self._lock:
            database, self._database = self._database, None
        if database is not None:
            database.close()
