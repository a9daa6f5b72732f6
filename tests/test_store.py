import unittest
from datetime import datetime, timedelta
import pytz
from tasksync.core.timeutil import (
    floor_minutes,
    format_ical_utc,
    from_epoch_ms,
    parse_ical_datetime,
    parse_instant,
    to_epoch_ms,
)
from tests.fakes import make_store


class ConfigStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = make_store()

    def test_get_default(self):
        self.assertIsNone(self.store.get("missing"))
        self.assertEqual(self.store.get("missing", []), [])

    def test_set_and_overwrite(self):
        self.store.set("offlineMode", True)
        self.store.set("offlineMode", False)
        self.assertFalse(self.store.get("offlineMode"))

    def test_returns_copies(self):
        self.store.set("tasks", [{"id": "1"}])
        value = self.store.get("tasks")
        value.append({"id": "2"})
        self.assertEqual(self.store.get("tasks"), [{"id": "1"}])

    def test_update_many_and_delete(self):
        self.store.update({"a": 1, "b": {"nested": [1, 2]}})
        self.assertEqual(self.store.get("b"), {"nested": [1, 2]})

        self.store.delete("a")
        self.store.delete("never-set")
        self.assertIsNone(self.store.get("a"))
        self.assertEqual(self.store.get("b"), {"nested": [1, 2]})


class TimeUtilTests(unittest.TestCase):
    def test_ical_forms(self):
        # 日付のみ・浮動時刻は Asia/Tokyo として解釈
        self.assertEqual(parse_ical_datetime("20250115"), datetime(2025, 1, 15, 14, 59, 59, tzinfo=pytz.utc))
        self.assertEqual(parse_ical_datetime("20250115T090000"), datetime(2025, 1, 15, 0, 0, tzinfo=pytz.utc))
        self.assertEqual(parse_ical_datetime("20250115T090000Z"), datetime(2025, 1, 15, 9, 0, tzinfo=pytz.utc))
        self.assertIsNone(parse_ical_datetime("20251345"))
        self.assertIsNone(parse_ical_datetime("garbage"))

    def test_parse_instant(self):
        expected = datetime(2025, 1, 15, 14, 0, tzinfo=pytz.utc)
        self.assertEqual(parse_instant(1736949600000), expected)
        self.assertEqual(parse_instant("2025-01-15T14:00:00Z"), expected)
        self.assertEqual(parse_instant("2025-01-15T23:00:00+09:00"), expected)
        self.assertEqual(parse_instant(datetime(2025, 1, 15, 14, 0)), expected)
        self.assertIsNone(parse_instant(True))
        self.assertIsNone(parse_instant(""))

    def test_epoch_and_format(self):
        when = datetime(2025, 1, 15, 14, 0, tzinfo=pytz.utc)
        self.assertEqual(to_epoch_ms(when), 1736949600000)
        self.assertEqual(from_epoch_ms(1736949600000), when)
        self.assertIsNone(to_epoch_ms(None))
        self.assertEqual(format_ical_utc(when), "20250115T140000Z")

    def test_floor_minutes(self):
        self.assertEqual(floor_minutes(timedelta(minutes=15, seconds=59)), 15)
        self.assertEqual(floor_minutes(timedelta(seconds=-30)), -1)


if __name__ == "__main__":
    unittest.main()
