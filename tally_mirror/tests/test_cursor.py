"""
Tests for the sync cursor tracker.
"""
import pytest
from tally_mirror.cursor import SyncCursorTracker
from tally_mirror.entities import ENTITY_KINDS
from tally_mirror.errors import ValidationError


@pytest.fixture
def tracker(stores):
    entity_stores, cursor_store = stores
    return SyncCursorTracker(entity_stores, cursor_store)


class TestAcknowledgedRevision:

    def test_defaults_to_zero(self, tracker):
        assert tracker.get_last_acknowledged_revision("T1") == 0
        assert tracker.get_cursor("T1") is None

    def test_read_has_no_side_effects(self, tracker, stores):
        tracker.get_last_acknowledged_revision("T1")
        assert stores[1].get("T1") is None

    def test_record_and_overwrite(self, tracker):
        first = tracker.record_acknowledgement("T1", 10, "ledger")
        tracker.record_acknowledgement("T1", 25, "group")

        cursor = tracker.get_cursor("T1")
        assert first.last_sync_time is not None
        assert cursor.last_acknowledged_revision == 25
        assert cursor.entity_kind == "group"
        assert tracker.get_last_acknowledged_revision("T1") == 25

    def test_cursor_may_move_backwards(self, tracker):
        tracker.record_acknowledgement("T1", 25)
        tracker.record_acknowledgement("T1", 7)
        assert tracker.get_last_acknowledged_revision("T1") == 7

    def test_tenants_are_independent(self, tracker):
        tracker.record_acknowledgement(1, 100)
        assert tracker.get_last_acknowledged_revision("1") == 100
        assert tracker.get_last_acknowledged_revision("2") == 0

    def test_string_revision(self, tracker):
        tracker.record_acknowledgement("T1", "1 024")
        assert tracker.get_last_acknowledged_revision("T1") == 1024

    def test_validation(self, tracker):
        with pytest.raises(ValidationError):
            tracker.record_acknowledgement("", 10)
        with pytest.raises(ValidationError):
            tracker.record_acknowledgement("T1", "ten")
        with pytest.raises(ValidationError):
            tracker.get_last_acknowledged_revision(None)


class TestStoreDerivedRevision:

    def test_zero_without_records(self, tracker):
        assert tracker.get_current_max_revision("T1") == 0
        assert tracker.get_all_entity_kind_maxima("T1") == {name: 0 for name in ENTITY_KINDS}

    def test_max_across_kinds(self, tracker, reconciler, make_payload):
        reconciler.upsert("ledger", make_payload("ledger", alter_id=10))
        reconciler.upsert("group", make_payload("group", alter_id=42))
        reconciler.upsert("units", make_payload("units", alter_id=7))
        reconciler.upsert("ledger", make_payload("ledger", tenant="T2", alter_id=99))

        maxima = tracker.get_all_entity_kind_maxima("T1")
        assert maxima["ledger"] == 10
        assert maxima["group"] == 42
        assert maxima["units"] == 7
        assert maxima["currency"] == 0
        assert tracker.get_current_max_revision("T1") == 42
        assert tracker.get_current_max_revision("T2") == 99

    def test_independent_of_acknowledgement(self, tracker, reconciler, make_payload):
        """A wrong or missing acknowledgement does not change the derived max."""
        reconciler.upsert("stockitem", make_payload("stockitem", alter_id=50))
        assert tracker.get_current_max_revision("T1") == 50

        tracker.record_acknowledgement("T1", 5000)
        assert tracker.get_current_max_revision("T1") == 50
        assert tracker.get_last_acknowledged_revision("T1") == 5000

    def test_max_follows_regressed_revision(self, tracker, reconciler, make_payload):
        """Max is recomputed from what is stored, so a later lower alter id lowers it."""
        reconciler.upsert("ledger", make_payload(alter_id=12))
        reconciler.upsert("ledger", make_payload(alter_id=10))
        assert tracker.get_current_max_revision("T1") == 10


class TestStatus:

    def test_drift(self, tracker, reconciler, make_payload):
        reconciler.upsert("ledger", make_payload(alter_id=30))
        tracker.record_acknowledgement("T1", 20, "ledger")

        status = tracker.status("T1")
        assert status["lastAcknowledgedRevision"] == 20
        assert status["currentMaxRevision"] == 30
        assert status["drift"] == 10
        assert status["inSync"] is False
        assert status["masters"]["ledger"] == 30

    def test_in_sync(self, tracker):
        status = tracker.status("T9")
        assert status["inSync"] is True
        assert status["lastSyncTime"] is None
