import unittest
from datetime import datetime
import pytz
from tasksync.core.errors import CacheOverwriteError
from tasksync.core.store import CACHED_LISTS, FOREVER_OFFLINE, LEGACY_CACHE_LIST_ID, LEGACY_TASKS
from tasksync.models.task import RelativeAlarm
from tasksync.sync.cache import ListCache, reconcile_list_index, snapshot_task
from tests.fakes import make_store


class ServerList:
    def __init__(self, id, title):
        self.id = id
        self.title = title


class ReconcileListIndexTests(unittest.TestCase):
    def test_keeps_tasks_and_updates_title(self):
        t1 = {"id": "1", "title": "one"}
        t2 = {"id": "2", "title": "two"}
        cached = [{"id": "A", "title": "Old", "tasks": [t1, t2]}]

        result = reconcile_list_index([ServerList("A", "New")], cached)

        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].title, "New")
        self.assertEqual([t.id for t in result[0].tasks], ["1", "2"])
        self.assertEqual([t.title for t in result[0].tasks], ["one", "two"])

    def test_drops_lists_absent_from_server(self):
        cached = [{"id": "A", "title": "A", "tasks": []}, {"id": "B", "title": "B", "tasks": []}]
        result = reconcile_list_index([{"id": "A", "title": "A"}], cached)
        self.assertEqual([s.id for s in result], ["A"])

    def test_new_server_lists_start_empty(self):
        result = reconcile_list_index([{"id": "C", "title": "Fresh"}], [])
        self.assertEqual(result[0].id, "C")
        self.assertEqual(result[0].tasks, [])

    def test_null_and_malformed_entries_filtered(self):
        cached = [None, {"title": "no id"}, {"id": "A", "title": "A", "tasks": [None]}]
        result = reconcile_list_index([None, {"id": "A", "title": "A2"}], cached)
        self.assertEqual([(s.id, s.title, s.tasks) for s in result], [("A", "A2", [])])

    def test_malformed_tasks_do_not_drop_the_list(self):
        cached = [{"id": "A", "title": "Old", "tasks": [
            {"id": "1", "title": "one", "subtasks": [{"id": "1a", "title": "sub"}, {"title": "no id"}]},
            {"title": "no id"},
            {"id": "2", "priority": "high"},
        ]}]

        result = reconcile_list_index([{"id": "A", "title": "New"}], cached)

        self.assertEqual([t.id for t in result[0].tasks], ["1"])
        self.assertEqual([s.id for s in result[0].tasks[0].subtasks], ["1a"])


class SnapshotTaskTests(unittest.TestCase):
    def test_flattens_recursively_with_epoch_millis(self):
        due = datetime(2025, 1, 15, 14, 0, tzinfo=pytz.utc)
        child = {"id": "c", "uid": "c-uid", "title": "child", "parent_id": "p-uid", "subtasks": []}
        parent = {
            "id": "p", "uid": "p-uid", "title": "parent", "due_date": due, "geo": (35.6, 139.7),
            "alarm": RelativeAlarm(15), "categories": ["work"], "subtasks": [child],
        }

        data = snapshot_task(parent).model_dump(mode="json", by_alias=True)

        self.assertEqual(data["dueDate"], 1736949600000)
        self.assertEqual(data["geo"], {"lat": 35.6, "lon": 139.7})
        self.assertEqual(data["alarm"], {"type": "relative", "minutes": 15})
        self.assertEqual(data["subtasks"][0]["parentId"], "p-uid")
        self.assertEqual(data["subtasks"][0]["title"], "child")


class ListCacheTests(unittest.TestCase):
    def setUp(self):
        self.store = make_store()
        self.cache = ListCache(self.store)

    def test_update_index_persists_merge(self):
        self.store.set(CACHED_LISTS, [{"id": "A", "title": "Old", "tasks": [{"id": "1", "title": "t"}]}])

        self.cache.update_index([ServerList("A", "New"), ServerList("B", "Other")])

        stored = self.store.get(CACHED_LISTS)
        self.assertEqual([(l["id"], l["title"]) for l in stored], [("A", "New"), ("B", "Other")])
        self.assertEqual(stored[0]["tasks"][0]["title"], "t")

    def test_update_index_keeps_valid_tasks_next_to_malformed_ones(self):
        self.store.set(CACHED_LISTS, [{"id": "A", "title": "A", "tasks": [{"id": "1"}, {"id": "2", "priority": "high"}]}])

        self.cache.update_index([ServerList("A", "A")])

        self.assertEqual([t["id"] for t in self.store.get(CACHED_LISTS)[0]["tasks"]], ["1"])

    def test_cache_current_data_replaces_one_list(self):
        self.store.set(CACHED_LISTS, [
            {"id": "A", "title": "A", "tasks": [{"id": "old"}]},
            {"id": "B", "title": "B", "tasks": [{"id": "keep"}]},
        ])

        self.cache.cache_current_data("A", "A", [{"id": "new", "title": "fresh"}])

        self.assertEqual([t.id for t in self.cache.get("A").tasks], ["new"])
        self.assertEqual([t.id for t in self.cache.get("B").tasks], ["keep"])
        self.assertEqual(self.store.get(LEGACY_CACHE_LIST_ID), "A")
        self.assertEqual(self.store.get(LEGACY_TASKS)[0]["id"], "new")

    def test_cache_current_data_appends_unknown_list(self):
        self.cache.cache_current_data("Z", "Zed", [])
        self.assertTrue(self.cache.has_cached_lists())
        self.assertEqual(self.cache.get("Z").title, "Zed")

    def test_forever_offline_blocks_writes(self):
        self.store.set(FOREVER_OFFLINE, True)

        self.assertIsNone(self.cache.cache_current_data("A", "A", [{"id": "1"}]))
        self.cache.cache_all_lists([{"id": "A", "title": "A", "tasks": []}])
        self.cache.update_index([ServerList("A", "A")])

        self.assertIsNone(self.store.get(CACHED_LISTS))
        with self.assertRaises(CacheOverwriteError):
            self.cache.create_cache_data("A", [])

    def test_cache_all_lists(self):
        self.cache.cache_all_lists([{"id": "A", "title": "A", "tasks": [{"id": "1"}]}, {"id": "B", "title": "B"}])
        self.assertEqual([s.id for s in self.cache.cached_lists()], ["A", "B"])

    def test_legacy_snapshot(self):
        self.assertIsNone(self.cache.legacy_snapshot())
        self.cache.create_cache_data("A", [{"id": "1", "title": "legacy"}])

        snapshot = self.cache.legacy_snapshot()
        self.assertEqual(snapshot.id, "cached")
        self.assertEqual(snapshot.tasks[0].title, "legacy")

    def test_corrupt_cache_is_ignored(self):
        self.store.set(CACHED_LISTS, {"not": "a list"})
        self.assertEqual(self.cache.cached_lists(), [])
        self.assertFalse(self.cache.has_cached_lists())


if __name__ == "__main__":
    unittest.main()
