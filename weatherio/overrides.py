"""
Versioned, soft-deletable override records keyed by (location, date, owner).

For each key the stored records form the version sequence 1..N and at most one
of them is active. Records are never deleted; `remove` only deactivates the
current version and `add` deactivates everything before inserting the next.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Hashable, Iterator, NamedTuple, Optional

from weatherio.connection import ConnectionManager
from weatherio.db import DESCENDING, Document, utc_timestamp

logger = logging.getLogger(__name__)

_NEWEST_FIRST = [("version", DESCENDING)]


class Location(NamedTuple):
    """Latitude/longitude pair, kept as the caller's strings."""

    lat: str
    lon: str


@dataclass
class OverrideRecord:
    lat: str
    lon: str
    date: str
    owner: str
    values: Optional[dict]
    updated_at: str
    version: int
    active: bool
    id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Document) -> "OverrideRecord":
        return cls(
            lat=doc["lat"],
            lon=doc["lon"],
            date=doc["date"],
            owner=doc["updated_by"],
            values=doc.get("new_values"),
            updated_at=doc["updated_at"],
            version=doc["version"],
            active=bool(doc["active"]),
            id=doc.get("id"),
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "lat": self.lat,
            "lon": self.lon,
            "date": self.date,
            "newValues": self.values,
            "updatedAt": self.updated_at,
            "updatedBy": self.owner,
            "version": self.version,
            "active": self.active,
        }


class KeyedLocks:
    """Per-key mutual exclusion; a key's lock lives only while someone holds or awaits it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def _key_filter(location: tuple[str, str], date: str, owner: str) -> Document:
    lat, lon = location
    return {"lat": lat, "lon": lon, "date": date, "updated_by": owner}


class OverrideStore:
    """
    Read/write access to override records.

    `add` and `remove` on the same key are serialized within this process.
    Writers in other processes are not coordinated: concurrent adds there can
    still produce a duplicate version or a briefly double-active key.
    """

    def __init__(self, connection: ConnectionManager):
        self._connection = connection
        self._locks = KeyedLocks()

    def get_latest(
        self, location: tuple[str, str], date: str, owner: str
    ) -> Optional[OverrideRecord]:
        """Return the active record with the highest version, or None."""
        db = self._connection.get()
        doc = db.overrides.find_one(
            {**_key_filter(location, date, owner), "active": True}, sort=_NEWEST_FIRST
        )
        return OverrideRecord.from_document(doc) if doc else None

    def add(
        self,
        location: tuple[str, str],
        date: str,
        owner: str,
        values: Optional[dict],
    ) -> OverrideRecord:
        """Store `values` as the next version for the key and make it the only active one."""
        db = self._connection.get()
        key = _key_filter(location, date, owner)
        with self._locks.hold(tuple(key.values())):
            latest = db.overrides.find_one(key, sort=_NEWEST_FIRST)
            version = latest["version"] + 1 if latest else 1
            # Every version, not only the active one.
            db.overrides.update_many(key, {"active": False})
            doc = db.overrides.insert(
                {
                    **key,
                    "new_values": values,
                    "updated_at": utc_timestamp(),
                    "version": version,
                    "active": True,
                }
            )
        logger.info(
            "Override v%d stored for %s,%s on %s by %s",
            version, key["lat"], key["lon"], date, owner,
        )
        return OverrideRecord.from_document(doc)

    def remove(
        self, location: tuple[str, str], date: str, owner: str
    ) -> Optional[OverrideRecord]:
        """Deactivate the active record for the key and return it, or None if nothing is active."""
        db = self._connection.get()
        key = _key_filter(location, date, owner)
        with self._locks.hold(tuple(key.values())):
            doc = db.overrides.find_one_and_update(
                {**key, "active": True}, {"active": False}, sort=_NEWEST_FIRST
            )
        if doc is None:
            return None
        logger.info(
            "Override v%d deactivated for %s,%s on %s by %s",
            doc["version"], key["lat"], key["lon"], date, owner,
        )
        return OverrideRecord.from_document(doc)
