# Tests/Sync/test_sync_properties.py
#
# Property-based tests for the sync core using Hypothesis.
#
# Imports
import uuid
from collections import Counter
from datetime import timedelta

from hypothesis import HealthCheck, given, settings, strategies as st

from hive_sync.Constants import EntityKind
from hive_sync.Sync.conflict_detector import detect_conflict
from hive_sync.Utils.timestamps import EPOCH, parse_timestamp, to_db_timestamp
#
########################################################################################################################
#
# Hypothesis Setup:

settings.register_profile(
    "db_friendly",
    deadline=1500,
    suppress_health_check=[
        HealthCheck.too_slow,
        HealthCheck.function_scoped_fixture
    ]
)
settings.load_profile("db_friendly")

BASE = parse_timestamp("2024-01-01T00:00:00Z")

offsets = st.integers(min_value=0, max_value=10_000_000)

#
########################################################################################################################
#
# Tests:


@given(server_offset=offsets, client_offset=offsets)
def test_conflict_iff_server_is_strictly_newer(server_offset, client_offset):
    server_updated_at = BASE + timedelta(microseconds=server_offset)
    client_timestamp = BASE + timedelta(microseconds=client_offset)
    check = detect_conflict({"id": "p-1", "updatedAt": to_db_timestamp(server_updated_at)}, client_timestamp)
    assert check.conflict is (server_updated_at > client_timestamp)


@given(client_offset=offsets)
def test_missing_entity_never_conflicts(client_offset):
    assert detect_conflict(None, BASE + timedelta(microseconds=client_offset)).conflict is False


@given(stamps=st.lists(offsets, min_size=1, max_size=20))
def test_checkpoint_only_moves_forward(state_db, stamps):
    device = f"device-{uuid.uuid4().hex[:8]}"
    for offset in stamps:
        state_db.advance_checkpoint("user", "biz", device, BASE + timedelta(seconds=offset))
    expected = BASE + timedelta(seconds=max(stamps))
    assert parse_timestamp(state_db.get_checkpoint("user", "biz", device)) == expected


# Tie groups up to the page size can always be kept whole on a single page
day_lists = st.lists(st.integers(min_value=0, max_value=30), max_size=15).filter(
    lambda days: max(Counter(days).values(), default=0) <= 3)


@given(days=day_lists)
def test_paged_pull_delivers_every_change_exactly_once(service_factory, catalog_db, days):
    business_id = f"biz-{uuid.uuid4().hex[:8]}"
    for index, day in enumerate(days):
        catalog_db.mirror_upsert(EntityKind.PRODUCT, business_id, {
            "id": f"p-{index}", "name": f"Item {index}", "price": index,
            "updatedAt": to_db_timestamp(BASE + timedelta(days=day))})
    service = service_factory(pull_page_size=3)

    seen, since = [], EPOCH
    for _ in range(len(days) + 2):
        response = service.pull("user", business_id, "device", since)
        assert len(response.changes) <= 3
        assert all(c.server_timestamp > since for c in response.changes)
        seen.extend(c.entity_id for c in response.changes)
        since = response.server_timestamp
        if not response.has_more:
            break

    assert response.has_more is False
    assert sorted(seen) == sorted(f"p-{i}" for i in range(len(days)))
