import unittest
from datetime import datetime
from unittest import mock
import pytz
from tasksync.core.errors import ListNotFoundError, TaskNotFoundError, UnsupportedTaskOperation
from tasksync.core.store import LOCAL_LISTS, NEXT_ID
from tasksync.models.task import RelativeAlarm, TaskCapability, TaskStatus
from tasksync.providers.local import LocalHandler
from tests.fakes import make_store


class LocalListCrudTests(unittest.TestCase):
    def setUp(self):
        self.store = make_store()
        self.handler = LocalHandler(self.store)

    def test_create_rename_delete(self):
        created = self.handler.create_list("Groceries")
        self.assertEqual(created.id, "local:0")
        self.assertEqual(self.store.get(NEXT_ID), 1)

        self.handler.rename_list("local:0", "Food")
        self.assertEqual([(l.id, l.title) for l in self.handler.get_task_lists()], [("local:0", "Food")])

        self.handler.delete_list("local:0")
        self.assertEqual(self.handler.get_task_lists(), [])

    def test_missing_list(self):
        with self.assertRaises(ListNotFoundError):
            self.handler.get_task_list("local:404")
        with self.assertRaises(ListNotFoundError):
            self.handler.rename_list("local:404", "x")
        with self.assertRaises(ListNotFoundError):
            self.handler.delete_list("local:404")


class LocalTaskTests(unittest.TestCase):
    def setUp(self):
        self.store = make_store()
        self.hook = mock.Mock()
        self.handler = LocalHandler(self.store, on_reminder_change=self.hook)
        self.task_list = self.handler.create_list("Inbox")

    def stored_tasks(self):
        return self.store.get(LOCAL_LISTS)[0]["tasks"]

    def test_insert_prepends_with_cached_ids(self):
        first = self.task_list.insert_task("first")
        second = self.task_list.insert_task("second")

        self.assertEqual(first.id, "cached:1")
        self.assertEqual(second.id, "cached:2")
        self.assertEqual(second.uid, "cached:2")
        self.assertEqual([t.title for t in self.task_list.get_tasks().tasks], ["second", "first"])

    def test_insert_subtask_nests_under_parent(self):
        parent = self.task_list.insert_task("parent")
        child = self.task_list.insert_subtask("child", parent.uid)
        grandchild = self.task_list.insert_subtask("grandchild", child.uid)

        tasks = self.task_list.get_tasks().tasks
        self.assertEqual(tasks[0].subtasks[0].title, "child")
        self.assertEqual(tasks[0].subtasks[0].subtasks[0].id, grandchild.id)
        self.assertEqual(self.task_list.get_task(grandchild.id).parent_id, child.uid)

    def test_insert_subtask_missing_parent(self):
        with self.assertRaises(TaskNotFoundError):
            self.task_list.insert_subtask("child", "cached:999")

    def test_updates_persist(self):
        task = self.task_list.insert_task("draft")

        self.assertEqual(task.set_title("final"), {"result": True})
        task.set_description("notes")
        task.set_priority(5)
        task.set_categories(["home", "home", "errands"])
        task.set_location(35.0, 139.0, "Park")

        reloaded = self.task_list.get_task(task.id)
        self.assertEqual(reloaded.title, "final")
        self.assertEqual(reloaded.description, "notes")
        self.assertEqual(reloaded.priority_level, "medium")
        self.assertEqual(reloaded.categories, ["home", "errands"])
        self.assertEqual(reloaded.geo, (35.0, 139.0))
        self.assertEqual(reloaded.location, "Park")

    def test_status_updates_flags(self):
        task = self.task_list.insert_task("t")
        task.set_status(TaskStatus.IN_PROCESS)

        raw = self.stored_tasks()[0]
        self.assertEqual(raw["status"], "IN-PROCESS")
        self.assertTrue(raw["inProgress"])
        self.assertFalse(raw["completed"])

        task.set_completed(True)
        self.assertTrue(self.task_list.get_task(task.id).completed)
        self.assertEqual(self.task_list.get_tasks().tasks, [])
        self.assertEqual(len(self.task_list.get_tasks(with_completed=True).tasks), 1)

    def test_due_date_and_alarm(self):
        task = self.task_list.insert_task("t")
        due = datetime(2025, 1, 15, 14, 0, tzinfo=pytz.utc)

        task.set_due_date_with_alarm(due, 30)

        reloaded = self.task_list.get_task(task.id)
        self.assertEqual(reloaded.due_date, due)
        self.assertEqual(reloaded.alarm, RelativeAlarm(30))
        self.assertEqual(self.stored_tasks()[0]["dueDate"], 1736949600000)
        self.hook.assert_called_once_with(task)

        task.set_alarm(None)
        self.assertIsNone(self.task_list.get_task(task.id).alarm)

    def test_update_subtask(self):
        parent = self.task_list.insert_task("parent")
        child = self.task_list.insert_subtask("child", parent.uid)

        self.task_list.get_task(child.id).set_title("renamed")

        self.assertEqual(self.stored_tasks()[0]["subtasks"][0]["title"], "renamed")

    def test_delete_removes_nested_subtree(self):
        parent = self.task_list.insert_task("parent")
        child = self.task_list.insert_subtask("child", parent.uid)

        self.assertEqual(parent.delete(), {"result": True})

        self.assertEqual(self.stored_tasks(), [])
        with self.assertRaises(TaskNotFoundError):
            self.task_list.get_task(child.id)
        self.assertEqual(parent.delete(), {"error": "Task not found"})

    def test_capabilities(self):
        task = self.task_list.insert_task("t")
        self.assertTrue(task.supports(TaskCapability.EDIT_DUE_DATE))
        self.assertFalse(task.supports(TaskCapability.SYNC))
        with self.assertRaises(UnsupportedTaskOperation):
            task.sync()


if __name__ == "__main__":
    unittest.main()
