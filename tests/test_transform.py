import json
import unittest
from activity_poller.transform import LogRecord, format_event, get_by_path, normalize_events, split_timestamp


EVENT = {
    "kind": "admin#reports#activity",
    "id": {
        "time": "2024-01-10T12:00:01.250Z",
        "uniqueQualifier": "-123",
        "applicationName": "login",
    },
    "actor": {"email": "someone@example.com"},
    "events": [{"type": "login", "name": "login_success"}],
}


class TestTransform(unittest.TestCase):
    def test_format_event(self):
        """Test framing of a complete activity event."""
        record = format_event(EVENT)

        self.assertEqual(record.message_ts, 1704888001)
        self.assertEqual(record.message_ts_us, 250000)
        self.assertEqual(record.message_type_id, "admin#reports#activity")
        self.assertEqual(json.loads(record.message), EVENT)

        wire = record.to_dict()
        self.assertEqual(wire["messageTs"], 1704888001)
        self.assertEqual(wire["messageTsUs"], 250000)
        self.assertEqual(wire["priority"], 11)
        self.assertEqual(wire["progName"], "GsuiteCollector")
        self.assertEqual(wire["messageType"], "json/gsuite")
        self.assertEqual(wire["messageTypeId"], "admin#reports#activity")

    def test_whole_second_has_no_microseconds(self):
        event = {"id": {"time": "2024-01-10T12:00:01Z"}}
        wire = format_event(event).to_dict()
        self.assertEqual(wire["messageTs"], 1704888001)
        self.assertNotIn("messageTsUs", wire)

    def test_missing_fields_still_framed(self):
        """Lookup failures never drop a record."""
        record = format_event({"unexpected": True})

        self.assertIsNone(record.message_ts)
        self.assertIsNone(record.message_type_id)
        wire = record.to_dict()
        self.assertNotIn("messageTs", wire)
        self.assertNotIn("messageTypeId", wire)
        self.assertNotIn("messageTsUs", wire)
        self.assertEqual(wire["message"], '{"unexpected":true}')

    def test_unparsable_timestamp(self):
        record = format_event({"id": {"time": "yesterday"}, "kind": 7})
        self.assertIsNone(record.message_ts)
        self.assertEqual(record.message_type_id, "7")

    def test_normalize_keeps_order_and_count(self):
        events = [EVENT, {}, {"kind": "other"}]
        records = normalize_events(events)

        self.assertEqual(len(records), 3)
        self.assertTrue(all(isinstance(r, LogRecord) for r in records))
        self.assertEqual([json.loads(r.message) for r in records], events)

    def test_custom_paths(self):
        event = {"meta": {"ts": 1700000000.5}, "type": ["a", "b"]}
        record = format_event(event, ts_paths=[["missing"], ["meta", "ts"]], type_id_paths=[["type", 1]])
        self.assertEqual(record.message_ts, 1700000000)
        self.assertEqual(record.message_ts_us, 500000)
        self.assertEqual(record.message_type_id, "b")

    def test_get_by_path(self):
        self.assertEqual(get_by_path(EVENT, ["id", "applicationName"]), "login")
        self.assertEqual(get_by_path(EVENT, ["events", 0, "name"]), "login_success")
        self.assertIsNone(get_by_path(EVENT, ["events", 5, "name"]))
        self.assertIsNone(get_by_path(EVENT, ["kind", "nested"]))
        self.assertIsNone(get_by_path(None, ["id"]))

    def test_split_timestamp(self):
        self.assertEqual(split_timestamp(1704888001), (1704888001, None))
        self.assertEqual(split_timestamp("2024-01-10T12:00:01.000123+00:00"), (1704888001, 123))
        self.assertIsNone(split_timestamp(""))
        self.assertIsNone(split_timestamp(True))
        self.assertIsNone(split_timestamp({"time": 1}))

    def test_negative_epoch_keeps_microseconds_positive(self):
        self.assertEqual(split_timestamp(-1.5), (-2, 500000))
        self.assertEqual(split_timestamp(-3), (-3, None))
        self.assertEqual(split_timestamp(1.9999999), (2, None))
        self.assertIsNone(split_timestamp(float("nan")))
        self.assertIsNone(split_timestamp(float("inf")))


if __name__ == "__main__":
    unittest.main()
