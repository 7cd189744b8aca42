import datetime as dt
import unittest

from justdogs.training.database import get_connection, get_metadata
from justdogs.training.errors import ConflictError, TransportError, ValidationError
from justdogs.training.search import DOG_FIELDS
from justdogs.training.store import RecordStore

FROZEN = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)


class RecordStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = RecordStore.open(clock=lambda: FROZEN)
        self.owner = self.store.users.create(
            {"email": "parent@example.com", "full_name": "Pat Parent", "role": "parent"}
        )

    def tearDown(self) -> None:
        self.store.close()

    def add_dog(self, name: str, breed: str) -> dict:
        return self.store.dogs.create({"name": name, "breed": breed, "age": 3, "owner_id": self.owner["id"]})

    def test_schema_version_recorded(self) -> None:
        self.assertEqual(get_metadata(self.store.conn, "schema_version"), "2")

    def test_create_and_read(self) -> None:
        dog = self.add_dog("Rex", "Kelpie")
        self.assertEqual(dog["name"], "Rex")
        self.assertEqual(dog["created_at"], dog["updated_at"])
        self.assertEqual(self.store.dogs.get_by_id(dog["id"]), dog)
        self.assertIsNone(self.store.dogs.get_by_id(999))
        self.assertEqual(self.store.dogs.find(owner_id=self.owner["id"]), [dog])

    def test_json_and_bool_columns_round_trip(self) -> None:
        message = self.store.messages.create(
            {
                "sender_id": self.owner["id"],
                "subject": "Hello",
                "content": "Hi all",
                "is_announcement": True,
                "target_roles": ["trainer"],
            }
        )
        self.assertIs(message["is_announcement"], True)
        self.assertEqual(message["target_roles"], ["trainer"])
        self.assertIs(self.owner["confirmed"], True)

    def test_updated_at_strictly_increases_with_frozen_clock(self) -> None:
        dog = self.add_dog("Rex", "Kelpie")
        first = self.store.dogs.update(dog["id"], {"weight": 20})
        second = self.store.dogs.update(dog["id"], {"weight": 21})
        self.assertGreater(dt.datetime.fromisoformat(first["updated_at"]), dt.datetime.fromisoformat(dog["updated_at"]))
        self.assertGreater(second["updated_at"], first["updated_at"])
        self.assertEqual(second["created_at"], dog["created_at"])

    def test_update_and_delete_missing_records(self) -> None:
        self.assertIsNone(self.store.dogs.update(42, {"name": "Ghost"}))
        self.assertFalse(self.store.dogs.delete(42))

    def test_versioned_update_detects_conflict(self) -> None:
        dog = self.add_dog("Rex", "Kelpie")
        booking = self.store.bookings.create(
            {
                "dog_id": dog["id"],
                "trainer_id": "trainer-1",
                "parent_id": self.owner["id"],
                "booking_type": "pet_care",
                "start_time": "2024-05-02T09:00:00",
                "end_time": "2024-05-02T10:00:00",
            }
        )
        self.assertEqual(booking["version"], 1)
        self.assertEqual(booking["status"], "pending")
        updated = self.store.bookings.update(booking["id"], {"location": "Park"}, expected_version=1)
        self.assertEqual(updated["version"], 2)
        with self.assertRaises(ConflictError):
            self.store.bookings.update(booking["id"], {"location": "Beach"}, expected_version=1)
        self.assertEqual(self.store.bookings.get_by_id(booking["id"])["location"], "Park")

    def test_unique_violation_is_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            self.store.users.create({"email": "parent@example.com", "full_name": "Dup", "role": "parent"})

    def test_unknown_filter_column(self) -> None:
        with self.assertRaises(ValidationError):
            self.store.dogs.find(colour="brown")

    def test_search(self) -> None:
        rex = self.add_dog("Rex", "Kelpie")
        molly = self.add_dog("Molly", "Border Collie")
        self.assertEqual(self.store.dogs.search("", DOG_FIELDS), [rex, molly])
        self.assertEqual(self.store.dogs.search("kelp", DOG_FIELDS), [rex])
        self.assertEqual(self.store.dogs.search("poodle", DOG_FIELDS), [])
        self.assertEqual(self.store.dogs.search("", DOG_FIELDS, owner_id=999), [])


class RemoteFallbackTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.remote = RecordStore.open()
        self.store = RecordStore(get_connection(":memory:"), remote=self.remote)

    def tearDown(self) -> None:
        self.store.close()

    def test_primary_used_when_available(self) -> None:
        user = self.store.users.create({"email": "a@example.com", "full_name": "A", "role": "admin"})
        self.assertEqual(self.remote.users.get_by_id(user["id"])["email"], "a@example.com")
        self.assertIs(self.store.dogs, self.remote.dogs)

    def test_messages_fall_back_to_local(self) -> None:
        self.remote.conn.execute("DROP TABLE messages")
        with self.assertLogs("justdogs.training.store", level="WARNING"):
            message = self.store.messages.create(
                {"sender_id": "a", "recipient_id": "b", "subject": "Hi", "content": "Hello"}
            )
        self.assertEqual(message["subject"], "Hi")
        with self.assertRaises(TransportError):
            self.remote.messages.get_all()

    def take_offline(self, table: str) -> None:
        self.remote.conn.execute(f"ALTER TABLE {table} RENAME TO {table}_offline")

    def bring_online(self, table: str) -> None:
        self.remote.conn.execute(f"ALTER TABLE {table}_offline RENAME TO {table}")

    def test_user_written_during_outage_keeps_its_id(self) -> None:
        admin = self.store.users.create({"email": "admin@example.com", "full_name": "Ada", "role": "admin"})
        self.take_offline("users")
        with self.assertLogs("justdogs.training.store", level="WARNING"):
            parent = self.store.users.create({"email": "parent@example.com", "full_name": "Pat", "role": "parent"})
        self.bring_online("users")

        self.assertNotEqual(parent["id"], admin["id"])
        self.assertIsNone(self.remote.users.get_by_id(parent["id"]))
        self.assertEqual(self.store.users.get_by_id(parent["id"])["email"], "parent@example.com")
        self.assertEqual(self.store.users.get_by_id(admin["id"])["email"], "admin@example.com")
        self.assertEqual([user["id"] for user in self.store.users.get_all()], [admin["id"], parent["id"]])
        self.assertEqual(self.store.users.find(email="parent@example.com"), [self.store.users.get_by_id(parent["id"])])

        updated = self.store.users.update(parent["id"], {"phone": "0821234567"})
        self.assertEqual(updated["email"], "parent@example.com")
        self.assertEqual(self.store.users.get_by_id(admin["id"])["phone"], None)
        self.assertTrue(self.store.users.delete(parent["id"]))
        self.assertIsNone(self.store.users.get_by_id(parent["id"]))

    def test_message_written_during_outage_keeps_its_id(self) -> None:
        remote_message = self.store.messages.create(
            {"sender_id": "a", "recipient_id": "b", "subject": "Remote", "content": "One"}
        )
        self.take_offline("messages")
        with self.assertLogs("justdogs.training.store", level="WARNING"):
            local_message = self.store.messages.create(
                {"sender_id": "b", "recipient_id": "a", "subject": "Local", "content": "Two"}
            )
        self.bring_online("messages")

        self.assertNotEqual(local_message["id"], remote_message["id"])
        self.assertEqual(self.store.messages.get_by_id(local_message["id"])["subject"], "Local")
        self.assertEqual(self.store.messages.get_by_id(remote_message["id"])["subject"], "Remote")
        self.assertEqual(
            [message["subject"] for message in self.store.messages.search("", ("subject",))], ["Remote", "Local"]
        )
        self.assertEqual([message["subject"] for message in self.store.messages.find(sender_id="b")], ["Local"])

    def test_unreachable_remote_is_skipped(self) -> None:
        with self.assertLogs("justdogs.training.store", level="WARNING"):
            store = RecordStore.open(remote_path="file:/nonexistent-dir/remote.db?mode=ro")
        self.assertIsNone(store.remote)
        store.close()


if __name__ == "__main__":
    unittest.main()
