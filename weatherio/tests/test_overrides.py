import threading
import unittest
from unittest.mock import patch

from weatherio.connection import ConnectionManager
from weatherio.db import InMemoryDatabase
from weatherio.exceptions import DatabaseConnectionError
from weatherio.overrides import Location, OverrideStore

LOCATION = Location("12.0", "77.0")
DATE = "2024-01-01"
OWNER = "a@x.com"


class OverrideStoreTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDatabase()
        self.store = OverrideStore(ConnectionManager(lambda: self.db))

    def _stored(self, owner=OWNER):
        docs = [d for d in self.db.overrides.documents if d["updated_by"] == owner]
        return sorted(docs, key=lambda d: d["version"])

    def test_versions_increase_and_only_newest_is_active(self):
        for expected in range(1, 5):
            record = self.store.add(LOCATION, DATE, OWNER, {"temp": expected})
            self.assertEqual(record.version, expected)
            self.assertTrue(record.active)

            stored = self._stored()
            self.assertEqual([d["version"] for d in stored], list(range(1, expected + 1)))
            active = [d for d in stored if d["active"]]
            self.assertEqual(len(active), 1)
            self.assertEqual(active[0]["id"], record.id)

    def test_example_walkthrough(self):
        first = self.store.add(LOCATION, DATE, OWNER, {"temp": 10})
        self.assertEqual(first.version, 1)
        self.assertTrue(first.active)

        second = self.store.add(LOCATION, DATE, OWNER, {"temp": 20})
        self.assertEqual(second.version, 2)
        self.assertFalse(self._stored()[0]["active"])

        removed = self.store.remove(LOCATION, DATE, OWNER)
        self.assertEqual(removed.version, 2)
        self.assertFalse(removed.active)
        self.assertEqual(removed.values, {"temp": 20})

        self.assertIsNone(self.store.get_latest(LOCATION, DATE, OWNER))

    def test_get_latest(self):
        self.assertIsNone(self.store.get_latest(LOCATION, DATE, OWNER))

        first = self.store.add(LOCATION, DATE, OWNER, {"temp": 1})
        self.assertEqual(self.store.get_latest(LOCATION, DATE, OWNER).id, first.id)

        second = self.store.add(LOCATION, DATE, OWNER, {"temp": 2})
        latest = self.store.get_latest(LOCATION, DATE, OWNER)
        self.assertEqual(latest.id, second.id)
        self.assertEqual(latest.version, 2)
        self.assertEqual(latest.values, {"temp": 2})

    def test_remove_twice(self):
        self.store.add(LOCATION, DATE, OWNER, {"temp": 1})
        self.assertIsNotNone(self.store.remove(LOCATION, DATE, OWNER))
        self.assertIsNone(self.store.remove(LOCATION, DATE, OWNER))
        self.assertFalse(any(d["active"] for d in self._stored()))

    def test_remove_without_records(self):
        self.assertIsNone(self.store.remove(LOCATION, DATE, OWNER))

    def test_removed_record_is_kept_inactive(self):
        self.store.add(LOCATION, DATE, OWNER, {"temp": 1})
        self.store.remove(LOCATION, DATE, OWNER)

        self.assertIsNone(self.store.get_latest(LOCATION, DATE, OWNER))
        stored = self._stored()
        self.assertEqual(len(stored), 1)
        self.assertFalse(stored[0]["active"])

    def test_add_after_remove_continues_numbering(self):
        self.store.add(LOCATION, DATE, OWNER, {"temp": 1})
        self.store.add(LOCATION, DATE, OWNER, {"temp": 2})
        self.store.remove(LOCATION, DATE, OWNER)

        record = self.store.add(LOCATION, DATE, OWNER, {"temp": 3})
        self.assertEqual(record.version, 3)
        self.assertEqual(self.store.get_latest(LOCATION, DATE, OWNER).version, 3)

    def test_owners_do_not_interact(self):
        self.store.add(LOCATION, DATE, "a@x.com", {"temp": 1})
        self.store.add(LOCATION, DATE, "a@x.com", {"temp": 2})
        other = self.store.add(LOCATION, DATE, "b@x.com", {"temp": 99})

        self.assertEqual(other.version, 1)
        self.assertEqual(self.store.get_latest(LOCATION, DATE, "a@x.com").version, 2)

        self.store.remove(LOCATION, DATE, "a@x.com")
        self.assertEqual(self.store.get_latest(LOCATION, DATE, "b@x.com").id, other.id)

    def test_location_and_date_are_part_of_the_key(self):
        self.store.add(LOCATION, DATE, OWNER, {"temp": 1})
        self.assertIsNone(self.store.get_latest(Location("12.0", "77.5"), DATE, OWNER))
        self.assertIsNone(self.store.get_latest(LOCATION, "2024-01-02", OWNER))
        self.assertEqual(self.store.add(LOCATION, "2024-01-02", OWNER, {}).version, 1)

    def test_location_accepts_plain_tuple(self):
        self.store.add(("1", "2"), DATE, OWNER, {"temp": 1})
        latest = self.store.get_latest(Location("1", "2"), DATE, OWNER)
        self.assertEqual((latest.lat, latest.lon), ("1", "2"))

    def test_add_deactivates_every_previous_version(self):
        key = {"lat": "12.0", "lon": "77.0", "date": DATE, "updated_by": OWNER}
        for version in (1, 2):
            self.db.overrides.insert(
                {**key, "new_values": {}, "updated_at": "t", "version": version, "active": True}
            )

        record = self.store.add(LOCATION, DATE, OWNER, {"temp": 3})

        self.assertEqual(record.version, 3)
        active = [d for d in self._stored() if d["active"]]
        self.assertEqual([d["version"] for d in active], [3])

    def test_values_are_stored_as_a_copy(self):
        values = {"temp": 10}
        self.store.add(LOCATION, DATE, OWNER, values)
        values["temp"] = 11
        self.assertEqual(self.store.get_latest(LOCATION, DATE, OWNER).values, {"temp": 10})

    def test_record_wire_format(self):
        record = self.store.add(LOCATION, DATE, OWNER, {"temp": 10})
        payload = record.as_dict()
        self.assertEqual(payload["lat"], "12.0")
        self.assertEqual(payload["lon"], "77.0")
        self.assertEqual(payload["newValues"], {"temp": 10})
        self.assertEqual(payload["updatedBy"], OWNER)
        self.assertTrue(payload["updatedAt"].endswith("Z"))
        self.assertEqual(payload["version"], 1)
        self.assertTrue(payload["active"])
        self.assertIsNotNone(payload["id"])

    def test_concurrent_adds_on_one_key_get_distinct_versions(self):
        errors = []

        def worker(n):
            try:
                self.store.add(LOCATION, DATE, OWNER, {"n": n})
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        stored = self._stored()
        self.assertEqual([d["version"] for d in stored], list(range(1, 21)))
        active = [d for d in stored if d["active"]]
        self.assertEqual([d["version"] for d in active], [20])

    def test_connection_failure_propagates(self):
        def fail():
            raise DatabaseConnectionError("DATABASE_URL is not set")

        store = OverrideStore(ConnectionManager(fail))
        with self.assertRaises(DatabaseConnectionError):
            store.add(LOCATION, DATE, OWNER, {})
        with self.assertRaises(DatabaseConnectionError):
            store.get_latest(LOCATION, DATE, OWNER)
        with self.assertRaises(DatabaseConnectionError):
            store.remove(LOCATION, DATE, OWNER)

    def test_persistence_errors_propagate_unchanged(self):
        with patch.object(self.db.overrides, "insert", side_effect=RuntimeError("disk full")):
            with self.assertRaises(RuntimeError):
                self.store.add(LOCATION, DATE, OWNER, {})


if __name__ == "__main__":
    unittest.main()
