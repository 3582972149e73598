import json
import unittest
from datetime import datetime, timedelta, timezone

from beadsync.date_utils import format_datetime_utc
from beadsync.main import _snapshot_payload
from beadsync.models import Item, Snapshot


class SnapshotPayloadTests(unittest.TestCase):
    def test_payload_formats_refreshed_at_as_utc_z(self) -> None:
        refreshed = datetime(2026, 3, 10, 14, 30, 5, 123456, tzinfo=timezone(timedelta(hours=2)))
        items = [Item(id="bd-1", title="One", raw={"secret": "x"}), Item(id="bd-2", title="Two")]
        snapshot = Snapshot(items=items, refreshedAt=refreshed, workspaceIds=["app"])

        payload = _snapshot_payload(snapshot, items, items[1:])

        self.assertEqual(payload["refreshedAt"], "2026-03-10T12:30:05Z")
        self.assertEqual(payload["itemCount"], 2)
        self.assertEqual(payload["staleIds"], ["bd-2"])
        self.assertNotIn("raw", payload["items"][0])
        json.dumps(payload)

    def test_payload_without_refresh(self) -> None:
        self.assertIsNone(_snapshot_payload(Snapshot(), [], [])["refreshedAt"])


class FormatDatetimeUtcTests(unittest.TestCase):
    def test_naive_values_are_taken_as_utc(self) -> None:
        self.assertEqual(format_datetime_utc(datetime(2026, 1, 2, 3, 4, 5)), "2026-01-02T03:04:05Z")


if __name__ == "__main__":
    unittest.main()
