import threading
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import (
    COLLECTIONS,
    DuplicateRecord,
    InMemoryRecordStore,
    MongoRecordStore,
    RecordNotFound,
    RecordStoreError,
)


class InMemoryRecordStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryRecordStore()

    def test_duplicate_uid_rejected(self):
        self.store.create_applicant({"uid": "u1", "name": "A"})
        with self.assertRaises(DuplicateRecord):
            self.store.create_applicant({"uid": "u1", "name": "B"})
        self.assertEqual(len(self.store.list_applicants()), 1)

    def test_increment_missing_card(self):
        self.assertIsNone(self.store.increment_card_likes("missing"))
        self.assertEqual(self.store.count_cards(), 0)

    def test_card_defaults_to_zero_likes(self):
        self.store.create_card({"id": "c1", "title": "T", "content": "C"})
        self.assertEqual(self.store.increment_card_likes("c1"), 1)
        self.assertEqual(self.store.increment_card_likes("c1"), 2)

    def test_concurrent_likes_are_not_lost(self):
        self.store.create_card({"id": "c1", "title": "T", "content": "C"})
        threads_count, likes_per_thread = 8, 50

        def like():
            for _ in range(likes_per_thread):
                self.store.increment_card_likes("c1")

        threads = [threading.Thread(target=like) for _ in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(self.store.get_card("c1")["likes"], threads_count * likes_per_thread)

    def test_update_returns_copy(self):
        user_id = self.store.create_applicant({"uid": "u1", "selected": False})
        updated = self.store.update_applicant(user_id, {"selected": True})
        updated["selected"] = False
        self.assertTrue(self.store.get_applicant(user_id)["selected"])

    def test_archive_missing_applicant(self):
        with self.assertRaises(RecordNotFound):
            self.store.archive_and_delete_applicant(str(ObjectId()), "gone")

    def test_archive_removed_when_delete_fails(self):
        user_id = self.store.create_applicant({"uid": "u1"})
        with patch.object(
            self.store, "_delete_document", side_effect=RecordStoreError("boom")
        ):
            with self.assertRaises(RecordStoreError):
                self.store.archive_and_delete_applicant(user_id, "reason")
        self.assertEqual(self.store.list_deselected(), [])
        self.assertIsNotNone(self.store.get_applicant(user_id))

    def test_reset(self):
        self.store.create_feedback({"ratings": []})
        self.store.reset()
        self.assertEqual(self.store.collection_names(), [])


class MongoRecordStoreTests(unittest.TestCase):
    def setUp(self):
        self.collections = {name: MagicMock() for name in COLLECTIONS}
        db = MagicMock()
        db.__getitem__.side_effect = self.collections.__getitem__
        self.store = MongoRecordStore(db)

    def test_increment_uses_atomic_update(self):
        self.collections["card"].find_one_and_update.return_value = {"id": "c1", "likes": 6}

        self.assertEqual(self.store.increment_card_likes("c1"), 6)
        args, kwargs = self.collections["card"].find_one_and_update.call_args
        self.assertEqual(args[0], {"id": "c1"})
        self.assertEqual(args[1]["$inc"], {"likes": 1})
        self.assertEqual(kwargs["return_document"], ReturnDocument.AFTER)

    def test_increment_missing_card(self):
        self.collections["card"].find_one_and_update.return_value = None
        self.assertIsNone(self.store.increment_card_likes("missing"))
        self.collections["card"].insert_one.assert_not_called()

    def test_duplicate_key_maps_to_duplicate_record(self):
        self.collections["user"].insert_one.side_effect = DuplicateKeyError("dup")
        with self.assertRaises(DuplicateRecord):
            self.store.create_applicant({"uid": "u1"})

    def test_invalid_object_id(self):
        self.assertIsNone(self.store.get_applicant("not-an-id"))
        self.collections["user"].find_one.assert_not_called()

    def test_list_applicants_serializes_ids(self):
        oid = ObjectId()
        self.collections["user"].find.return_value = [{"_id": oid, "uid": "u1"}]
        self.assertEqual(self.store.list_applicants(), [{"_id": str(oid), "uid": "u1"}])

    def test_archive_and_delete(self):
        oid = ObjectId()
        archive_oid = ObjectId()
        self.collections["user"].find_one.return_value = {
            "_id": oid,
            "uid": "u1",
            "name": "A",
            "created_at": datetime.now(timezone.utc),
        }
        self.collections["deselected"].insert_one.return_value.inserted_id = archive_oid
        self.collections["user"].delete_one.return_value.deleted_count = 1

        archive = self.store.archive_and_delete_applicant(str(oid), "late")

        inserted = self.collections["deselected"].insert_one.call_args[0][0]
        self.assertEqual(inserted["uid"], "u1")
        self.assertEqual(inserted["reason"], "late")
        self.assertEqual(inserted["userId"], str(oid))
        self.collections["user"].delete_one.assert_called_once_with({"_id": oid})
        self.assertEqual(archive["_id"], str(archive_oid))

    def test_archive_compensated_when_delete_fails(self):
        oid = ObjectId()
        archive_oid = ObjectId()
        self.collections["user"].find_one.return_value = {"_id": oid, "uid": "u1"}
        self.collections["deselected"].insert_one.return_value.inserted_id = archive_oid
        self.collections["user"].delete_one.side_effect = PyMongoError("down")

        with self.assertRaises(PyMongoError):
            self.store.archive_and_delete_applicant(str(oid), "late")
        self.collections["deselected"].delete_one.assert_called_once_with({"_id": archive_oid})

    def test_archive_removed_when_applicant_already_deleted(self):
        oid = ObjectId()
        archive_oid = ObjectId()
        self.collections["user"].find_one.return_value = {"_id": oid, "uid": "u1"}
        self.collections["deselected"].insert_one.return_value.inserted_id = archive_oid
        self.collections["user"].delete_one.return_value.deleted_count = 0

        with self.assertRaises(RecordNotFound):
            self.store.archive_and_delete_applicant(str(oid), "late")
        self.collections["deselected"].delete_one.assert_called_once_with({"_id": archive_oid})

    def test_archive_missing_applicant(self):
        self.collections["user"].find_one.return_value = None
        with self.assertRaises(RecordNotFound):
            self.store.archive_and_delete_applicant(str(ObjectId()), "late")
        self.collections["deselected"].insert_one.assert_not_called()


if __name__ == "__main__":
    unittest.main()
