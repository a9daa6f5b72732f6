import unittest
from tasksync.models.reminder import AppReminderRecord, VibrationType
from tasksync.reminders.payload import (
    DESCRIPTION_MAX_LENGTH,
    build_task_alarm_param,
    parse_task_alarm_param,
    sanitize,
)


class BuildTaskAlarmParamTests(unittest.TestCase):
    def test_format(self):
        param = build_task_alarm_param("uuid-123", "Submit report", "Attach the PDF", 1736949600)
        self.assertEqual(param, "task_uuid-123_1736949600_Submit report~Attach the PDF|V1|C|S1")

    def test_without_description(self):
        param = build_task_alarm_param("uuid-123", "Submit", "", 1736949600)
        self.assertEqual(param, "task_uuid-123_1736949600_Submit|V1|C|S1")

    def test_settings_from_record(self):
        record = AppReminderRecord(vibration_enabled=False, vibration_type=VibrationType.NOTIFICATION,
                                   sound_enabled=False)
        param = build_task_alarm_param("u", "T", "", 100, record)
        self.assertTrue(param.endswith("|V0|N|S0"))

    def test_settings_from_dict(self):
        param = build_task_alarm_param("u", "T", "", 100, {"vibration_type": "N"})
        self.assertTrue(param.endswith("|V1|N|S1"))


class ParseTaskAlarmParamTests(unittest.TestCase):
    def test_sanitized_and_truncated(self):
        title = "Pay | rent ~ now\nplease"
        description = "x" * 200
        param = build_task_alarm_param("caldav-uid", title, description, 1736949600,
                                       {"vibration_enabled": False, "vibration_type": "N", "sound_enabled": True})

        payload = parse_task_alarm_param(param)
        self.assertEqual(payload.task_uid, "caldav-uid")
        self.assertEqual(payload.timestamp, 1736949600)
        self.assertEqual(payload.title, "Pay   rent   now please")
        self.assertEqual(payload.description, "x" * DESCRIPTION_MAX_LENGTH + "...")
        self.assertFalse(payload.vibration_enabled)
        self.assertEqual(payload.vibration_type, "N")
        self.assertTrue(payload.sound_enabled)

    def test_uid_with_underscores_and_digits(self):
        uid = "abc_123_def"
        payload = parse_task_alarm_param(build_task_alarm_param(uid, "Title", "", 42))
        self.assertEqual(payload.task_uid, uid)
        self.assertEqual(payload.timestamp, 42)
        self.assertEqual(payload.title, "Title")

    def test_legacy_format_without_description(self):
        payload = parse_task_alarm_param("task_uuid-9_1736949600_Water plants|V1|C|S0")
        self.assertEqual(payload.title, "Water plants")
        self.assertEqual(payload.description, "")
        self.assertFalse(payload.sound_enabled)

    def test_non_task_payloads(self):
        self.assertIsNone(parse_task_alarm_param(None))
        self.assertIsNone(parse_task_alarm_param(""))
        self.assertIsNone(parse_task_alarm_param("event_123"))
        self.assertIsNone(parse_task_alarm_param("task_missing-fields"))

    def test_sanitize(self):
        self.assertEqual(sanitize("a|b~c\r\nd"), "a b c  d")
        self.assertEqual(sanitize(None), "")


if __name__ == "__main__":
    unittest.main()
