# Tests/DB/test_sync_state_db.py
#
# Imports
from datetime import timedelta

import pytest

from hive_sync.DB.SQLite_Base import InputError
from hive_sync.Utils.timestamps import EPOCH, parse_timestamp, to_db_timestamp, utc_now
#
########################################################################################################################
#
# Helpers:

USER = "user-wanjiku"
BIZ = "biz-nairobi"
DEVICE = "device-pos-1"


def _record(state_db, entity_id="e-1", operation="update", status="completed", entity_type="product",
            processed_at=None, client_timestamp=None, sync_id="s-1", payload=None, device_id=DEVICE):
    return state_db.record_change(
        user_id=USER, business_id=BIZ, device_id=device_id, entity_type=entity_type, entity_id=entity_id,
        sync_id=sync_id, operation=operation, payload=payload if payload is not None else {"price": 10},
        client_timestamp=client_timestamp or utc_now(), status=status, processed_at=processed_at)

#
########################################################################################################################
#
# Tests:


class TestSyncQueue:
    def test_record_change_round_trips(self, state_db):
        record = _record(state_db, payload={"name": "Kiondo", "tags": ["a"]})
        assert record["status"] == "completed"
        assert record["payload"] == {"name": "Kiondo", "tags": ["a"]}
        assert record["userId"] == USER
        assert record["resolution"] is None
        assert state_db.get_queue_record(record["id"]) == record

    def test_record_change_rejects_bad_status(self, state_db):
        with pytest.raises(ValueError):
            _record(state_db, status="pending")

    def test_get_queue_record_is_business_scoped(self, state_db):
        record = _record(state_db)
        assert state_db.get_queue_record(record["id"], business_id="other") is None
        assert state_db.get_queue_record(record["id"], business_id=BIZ)["id"] == record["id"]

    def test_find_completed_duplicate(self, state_db):
        ts = utc_now()
        record = _record(state_db, client_timestamp=ts)
        found = state_db.find_completed_duplicate(
            business_id=BIZ, device_id=DEVICE, entity_type="product", entity_id="e-1", sync_id="s-1",
            operation="update", client_timestamp=ts)
        assert found["id"] == record["id"]

        assert state_db.find_completed_duplicate(
            business_id=BIZ, device_id=DEVICE, entity_type="product", entity_id="e-1", sync_id="s-1",
            operation="update", client_timestamp=ts + timedelta(microseconds=1)) is None

    def test_conflicts_are_not_duplicates(self, state_db):
        ts = utc_now()
        _record(state_db, status="conflict", client_timestamp=ts)
        assert state_db.find_completed_duplicate(
            business_id=BIZ, device_id=DEVICE, entity_type="product", entity_id="e-1", sync_id="s-1",
            operation="update", client_timestamp=ts) is None

    def test_list_conflicts_and_mark_resolved(self, state_db):
        _record(state_db, entity_id="ok")
        conflict = _record(state_db, entity_id="clash", status="conflict")
        assert [r["id"] for r in state_db.list_conflicts(USER, BIZ)] == [conflict["id"]]
        assert state_db.list_conflicts("someone-else", BIZ) == []

        resolved_at = utc_now()
        assert state_db.mark_resolved(conflict["id"], "keep_server", resolved_at) is True
        assert state_db.mark_resolved(conflict["id"], "keep_client") is False

        record = state_db.get_queue_record(conflict["id"])
        assert record["status"] == "completed"
        assert record["resolution"] == "keep_server"
        assert record["resolvedAt"] == to_db_timestamp(resolved_at)
        assert record["processedAt"] == to_db_timestamp(resolved_at)
        assert state_db.list_conflicts(USER, BIZ) == []

    def test_deletions_feed(self, state_db):
        t0 = utc_now()
        _record(state_db, entity_type="image", entity_id="i-old", operation="delete",
                processed_at=t0 - timedelta(minutes=5))
        _record(state_db, entity_type="image", entity_id="i-new", operation="delete", processed_at=t0)
        _record(state_db, entity_type="image", entity_id="i-upd", operation="update", processed_at=t0)
        _record(state_db, entity_type="product", entity_id="p-del", operation="delete", processed_at=t0)
        _record(state_db, entity_type="image", entity_id="i-conflict", operation="delete", status="conflict",
                processed_at=t0)

        feed = state_db.get_deletions_since(BIZ, ["image"], t0 - timedelta(minutes=1), 10)
        assert [r["entityId"] for r in feed] == ["i-new"]
        # Strictly after the checkpoint
        assert state_db.get_deletions_since(BIZ, ["image"], t0, 10) == []
        assert state_db.get_deletions_since(BIZ, [], EPOCH, 10) == []

    def test_keep_server_deletes_leave_the_feed(self, state_db):
        conflict = _record(state_db, entity_type="image", entity_id="i-1", operation="delete", status="conflict")
        state_db.mark_resolved(conflict["id"], "keep_server")
        assert state_db.get_deletions_since(BIZ, ["image"], EPOCH, 10) == []

        other = _record(state_db, entity_type="image", entity_id="i-2", operation="delete", status="conflict")
        state_db.mark_resolved(other["id"], "keep_client")
        assert [r["entityId"] for r in state_db.get_deletions_since(BIZ, ["image"], EPOCH, 10)] == ["i-2"]

    def test_prune_queue(self, state_db):
        now = utc_now()
        _record(state_db, entity_id="old-update", processed_at=now - timedelta(days=40))
        _record(state_db, entity_id="old-delete", operation="delete", processed_at=now - timedelta(days=40))
        _record(state_db, entity_id="old-conflict", status="conflict", processed_at=now - timedelta(days=40))
        _record(state_db, entity_id="fresh", processed_at=now)

        assert state_db.prune_queue(now=now) == {"audit": 0, "deletions": 0}
        removed = state_db.prune_queue(audit_retention_days=30, deletion_retention_days=60, now=now)
        assert removed == {"audit": 1, "deletions": 0}
        removed = state_db.prune_queue(deletion_retention_days=30, now=now)
        assert removed == {"audit": 0, "deletions": 1}
        assert [r["entityId"] for r in state_db.list_conflicts(USER, BIZ)] == ["old-conflict"]

    def test_prune_rejects_negative_retention(self, state_db):
        with pytest.raises(InputError):
            state_db.prune_queue(audit_retention_days=-1)


class TestCheckpoints:
    def test_missing_checkpoint(self, state_db):
        assert state_db.get_checkpoint(USER, BIZ, DEVICE) is None

    def test_checkpoint_only_moves_forward(self, state_db):
        t1 = utc_now()
        assert state_db.advance_checkpoint(USER, BIZ, DEVICE, t1) == to_db_timestamp(t1)
        t0 = t1 - timedelta(hours=1)
        assert state_db.advance_checkpoint(USER, BIZ, DEVICE, t0) == to_db_timestamp(t1)
        t2 = t1 + timedelta(seconds=1)
        state_db.advance_checkpoint(USER, BIZ, DEVICE, t2)
        assert parse_timestamp(state_db.get_checkpoint(USER, BIZ, DEVICE)) == t2

    def test_checkpoints_are_per_device(self, state_db):
        t1 = utc_now()
        state_db.advance_checkpoint(USER, BIZ, DEVICE, t1)
        assert state_db.get_checkpoint(USER, BIZ, "device-2") is None

    def test_device_id_required(self, state_db):
        with pytest.raises(InputError):
            state_db.advance_checkpoint(USER, BIZ, "", utc_now())
