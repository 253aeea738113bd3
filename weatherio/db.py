"""
Document store abstraction for SQL databases and an in-memory test implementation.

Both backends expose the same small collection contract (equality filters,
field-set patches, ordering by named fields) so the stores above them never see
SQLAlchemy directly.
"""

from __future__ import annotations

import copy
import math
import threading
import uuid
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol, Sequence

from sqlalchemy import JSON, Boolean, Column, Index, Integer, String, create_engine, select, text, update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from weatherio.exceptions import DatabaseConnectionError, DuplicateKeyError

DESCENDING = -1

# sqlite3 "timeout" is how long a statement waits on a locked database file.
SQLITE_BUSY_TIMEOUT_SECONDS = 5.0

Document = dict[str, Any]
SortSpec = Sequence[tuple[str, int]]


class DocumentCollection(Protocol):
    """Interface for a collection of documents."""

    def find_one(
        self, filter: Document, sort: Optional[SortSpec] = None
    ) -> Optional[Document]:
        ...

    def update_many(self, filter: Document, patch: Document) -> int:
        ...

    def find_one_and_update(
        self, filter: Document, patch: Document, sort: Optional[SortSpec] = None
    ) -> Optional[Document]:
        ...

    def insert(self, document: Document) -> Document:
        ...


class Database(Protocol):
    """A connected database exposing the collections the service uses."""

    overrides: DocumentCollection
    users: DocumentCollection

    def close(self) -> None:
        ...


def _sort_key(field: str):
    def key(doc: Document):
        value = doc.get(field)
        return (value is None, value)

    return key


class InMemoryCollection:
    """Simple in-memory collection for development and tests."""

    def __init__(self, unique_fields: Iterable[str] = ()):
        self.documents: list[Document] = []
        self.unique_fields = tuple(unique_fields)
        self._lock = threading.RLock()

    @staticmethod
    def _matches(doc: Document, filter: Document) -> bool:
        return all(doc.get(key) == value for key, value in filter.items())

    def _select(self, filter: Document, sort: Optional[SortSpec]) -> list[Document]:
        matches = [doc for doc in self.documents if self._matches(doc, filter)]
        # Stable sorts applied last-key-first give multi-key ordering.
        for field, direction in reversed(list(sort or ())):
            matches.sort(key=_sort_key(field), reverse=direction == DESCENDING)
        return matches

    def find_one(
        self, filter: Document, sort: Optional[SortSpec] = None
    ) -> Optional[Document]:
        with self._lock:
            matches = self._select(filter, sort)
            return copy.deepcopy(matches[0]) if matches else None

    def update_many(self, filter: Document, patch: Document) -> int:
        with self._lock:
            matches = self._select(filter, None)
            for doc in matches:
                doc.update(copy.deepcopy(patch))
            return len(matches)

    def find_one_and_update(
        self, filter: Document, patch: Document, sort: Optional[SortSpec] = None
    ) -> Optional[Document]:
        with self._lock:
            matches = self._select(filter, sort)
            if not matches:
                return None
            doc = matches[0]
            doc.update(copy.deepcopy(patch))
            return copy.deepcopy(doc)

    def insert(self, document: Document) -> Document:
        with self._lock:
            for field in self.unique_fields:
                if field in document and self._select({field: document[field]}, None):
                    raise DuplicateKeyError(
                        f"Duplicate value for unique field {field!r}", field=field
                    )
            stored = copy.deepcopy(document)
            stored.setdefault("id", uuid.uuid4().hex)
            self.documents.append(stored)
            return copy.deepcopy(stored)


class InMemoryDatabase:
    """In-memory database holding the override and user collections."""

    def __init__(self):
        self.overrides = InMemoryCollection()
        self.users = InMemoryCollection(unique_fields=("email",))

    def close(self) -> None:
        pass


Base = declarative_base()


class OverrideRow(Base):
    __tablename__ = "overrides"
    __table_args__ = (
        Index("ix_overrides_key_version", "lat", "lon", "date", "updated_by", "version"),
    )

    id = Column(String, primary_key=True)
    lat = Column(String, nullable=False)
    lon = Column(String, nullable=False)
    date = Column(String, nullable=False)
    updated_by = Column(String, nullable=False)
    version = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=False)
    new_values = Column(JSON, nullable=True)
    updated_at = Column(String, nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    password = Column(String, nullable=False)
    created_at = Column(String, nullable=False)


class SqlCollection:
    """
    SQLAlchemy-backed collection mapping document fields onto the columns of one table.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        row_cls,
        unique_fields: Iterable[str] = (),
        lock=None,
    ):
        self.Session = session_factory
        self._lock = lock if lock is not None else nullcontext()
        self.row_cls = row_cls
        self.unique_fields = tuple(unique_fields)
        self._columns = [column.key for column in row_cls.__table__.columns]

    def _column(self, field: str):
        if field not in self._columns:
            raise KeyError(f"{self.row_cls.__tablename__} has no field {field!r}")
        return getattr(self.row_cls, field)

    def _where(self, filter: Document) -> list:
        return [self._column(field) == value for field, value in filter.items()]

    def _order_by(self, sort: Optional[SortSpec]) -> list:
        clauses = []
        for field, direction in sort or ():
            column = self._column(field)
            clauses.append(column.desc() if direction == DESCENDING else column.asc())
        return clauses

    def _to_document(self, row) -> Document:
        return {field: copy.deepcopy(getattr(row, field)) for field in self._columns}

    def find_one(
        self, filter: Document, sort: Optional[SortSpec] = None
    ) -> Optional[Document]:
        stmt = (
            select(self.row_cls)
            .where(*self._where(filter))
            .order_by(*self._order_by(sort))
            .limit(1)
        )
        with self._lock, self.Session() as session:
            row = session.execute(stmt).scalars().first()
            return self._to_document(row) if row is not None else None

    def update_many(self, filter: Document, patch: Document) -> int:
        stmt = (
            update(self.row_cls)
            .where(*self._where(filter))
            .values({self._column(field): value for field, value in patch.items()})
            .execution_options(synchronize_session=False)
        )
        with self._lock, self.Session() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount or 0

    def find_one_and_update(
        self, filter: Document, patch: Document, sort: Optional[SortSpec] = None
    ) -> Optional[Document]:
        stmt = (
            select(self.row_cls)
            .where(*self._where(filter))
            .order_by(*self._order_by(sort))
            .limit(1)
            .with_for_update()
        )
        with self._lock, self.Session() as session:
            row = session.execute(stmt).scalars().first()
            if row is None:
                return None
            for field, value in patch.items():
                self._column(field)
                setattr(row, field, copy.deepcopy(value))
            session.commit()
            return self._to_document(row)

    def insert(self, document: Document) -> Document:
        values = copy.deepcopy(document)
        values.setdefault("id", uuid.uuid4().hex)
        for field in values:
            self._column(field)
        with self._lock, self.Session() as session:
            row = self.row_cls(**values)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                duplicate = self._duplicate_field(values)
                if duplicate is None:
                    raise
                raise DuplicateKeyError(
                    f"Duplicate value for unique field {duplicate!r}", field=duplicate
                ) from exc
            return self._to_document(row)

    def _duplicate_field(self, values: Document) -> Optional[str]:
        for field in self.unique_fields:
            if field in values and self.find_one({field: values[field]}) is not None:
                return field
        return None


def _engine_options(database_url: str, connect_timeout: float) -> dict:
    url = make_url(database_url)
    options: dict[str, Any] = {"future": True, "pool_pre_ping": True, "pool_recycle": 1800}
    backend = url.get_backend_name()
    if backend == "sqlite":
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        if url.database in (None, "", ":memory:"):
            # One shared connection; SqlDatabase serializes access to it.
            options["poolclass"] = StaticPool
    elif backend == "postgresql":
        options["connect_args"] = {"connect_timeout": max(1, math.ceil(connect_timeout))}
        options["pool_timeout"] = connect_timeout
    return options


class SqlDatabase:
    """
    SQLAlchemy-backed database. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, engine):
        self.engine = engine
        self.Session = sessionmaker(
            bind=engine, class_=Session, expire_on_commit=False, future=True
        )
        # A StaticPool hands every thread the same DBAPI connection.
        lock = threading.RLock() if isinstance(engine.pool, StaticPool) else None
        self.overrides = SqlCollection(self.Session, OverrideRow, lock=lock)
        self.users = SqlCollection(
            self.Session, UserRow, unique_fields=("email",), lock=lock
        )

    @classmethod
    def connect(
        cls, database_url: Optional[str], *, connect_timeout: float = 3.0
    ) -> "SqlDatabase":
        """Create the engine, verify the server answers and ensure the tables exist."""
        if not database_url:
            raise DatabaseConnectionError("DATABASE_URL is not set")
        engine = None
        try:
            engine = create_engine(
                database_url, **_engine_options(database_url, connect_timeout)
            )
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            if engine is not None:
                engine.dispose()
            raise DatabaseConnectionError(f"Database connection failed: {exc}") from exc
        return cls(engine)

    def close(self) -> None:
        self.engine.dispose()


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a `Z` suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
