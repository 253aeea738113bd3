"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import threading

from fastapi import Request

from weatherio.config import Settings, get_settings
from weatherio.connection import ConnectionManager
from weatherio.db import Database, InMemoryDatabase, SqlDatabase
from weatherio.overrides import OverrideStore
from weatherio.users import UserStore

_lock = threading.Lock()
_connection: ConnectionManager | None = None
_override_store: OverrideStore | None = None
_user_store: UserStore | None = None


def connect_database() -> Database:
    settings = get_settings()
    if settings.use_in_memory_backends:
        return InMemoryDatabase()
    return SqlDatabase.connect(
        settings.database_url,
        connect_timeout=settings.db_connect_timeout_seconds,
    )


def get_connection() -> ConnectionManager:
    """
    Return the process-wide connection manager; the database itself is
    only connected when a store first needs it.
    """
    global _connection
    with _lock:
        if _connection is None:
            _connection = ConnectionManager(connect_database)
        return _connection


def get_override_store() -> OverrideStore:
    global _override_store
    connection = get_connection()
    with _lock:
        if _override_store is None:
            _override_store = OverrideStore(connection)
        return _override_store


def get_user_store() -> UserStore:
    global _user_store
    connection = get_connection()
    with _lock:
        if _user_store is None:
            _user_store = UserStore(connection, rounds=get_settings().bcrypt_rounds)
        return _user_store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
