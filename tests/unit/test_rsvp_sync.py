"""
Unit tests for RSVP synchronization
Tests mirror read priority, sequential mirrored writes and reconciliation
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from ensemble.integrations.firestore_client import DocumentReference, DocumentStoreError
from ensemble.integrations.memory_store import InMemoryFirestoreClient
from ensemble.models.rsvp import RSVPRecord, RSVPStatus, legacy_bucket, parse_status
from ensemble.services.rsvp import (
    RSVPSource,
    RSVPSynchronizer,
    canonical_ref,
    flat_ref,
    legacy_ref,
)


class FailingMirrorClient(InMemoryFirestoreClient):
    """In-memory store whose writes under one collection are rejected"""

    def __init__(self, failing_collection: str):
        super().__init__()
        self.failing_collection = failing_collection
        self.attempted = []

    async def _write_document(self, doc_ref, data, merge):
        self.attempted.append(doc_ref.full_path)
        if doc_ref.collection == self.failing_collection:
            raise RuntimeError("PERMISSION_DENIED")
        await super()._write_document(doc_ref, data, merge)


@pytest.fixture
def sync(store):
    return RSVPSynchronizer(store)


class TestStatusVocabulary:
    """Test canonical and legacy status parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("accepted", RSVPStatus.ACCEPTED),
        ("yes", RSVPStatus.ACCEPTED),
        ("NO", RSVPStatus.DECLINED),
        ("maybe", RSVPStatus.TENTATIVE),
        ("none", RSVPStatus.UNANSWERED),
        (RSVPStatus.TENTATIVE, RSVPStatus.TENTATIVE),
        ("going", None),
        (None, None),
        (1, None),
    ])
    def test_parse_status(self, value, expected):
        assert parse_status(value) == expected

    def test_legacy_bucket(self):
        assert legacy_bucket("accepted") == "yes"
        assert legacy_bucket("maybe") == "maybe"
        assert legacy_bucket("declined") == "no"
        assert legacy_bucket("unanswered") is None
        assert legacy_bucket("whatever") is None

    def test_record_rejects_unknown_status(self):
        with pytest.raises(ValueError):
            RSVPRecord(uid="u1", status="perhaps")

    def test_record_rejects_empty_uid(self):
        with pytest.raises(ValueError):
            RSVPRecord(uid=" ", status="accepted")

    def test_from_document_is_lenient(self):
        record = RSVPRecord.from_document("u9", {"status": "perhaps", "displayName": 4})
        assert record.uid == "u9"
        assert record.status == RSVPStatus.UNANSWERED
        assert record.display_name is None


class TestMirrorRefs:
    """Test mirror document locations"""

    def test_paths(self):
        assert canonical_ref("E1", "u1").full_path == "events/E1/availability/u1"
        assert legacy_ref("E1", "u1").full_path == "events/E1/rsvps/u1"
        assert flat_ref("E1", "u1").full_path == "availability/E1_u1"

    @pytest.mark.parametrize("event_id,uid", [("", "u1"), ("E1", "")])
    def test_empty_ids_rejected(self, event_id, uid):
        with pytest.raises(ValueError):
            canonical_ref(event_id, uid)


class TestSetRSVP:
    """Test the three sequential merge writes"""

    @pytest.mark.asyncio
    async def test_round_trip(self, sync):
        """Test set then get returns the written status"""
        await sync.set_rsvp("E1", {"uid": "u1", "status": "accepted", "displayName": "Alex"})

        record = await sync.get_my_rsvp("E1", "u1")
        assert record is not None
        assert record.status == RSVPStatus.ACCEPTED
        assert record.display_name == "Alex"

    @pytest.mark.asyncio
    async def test_all_three_mirrors_written(self, sync, store):
        """Test mirror contents"""
        updated = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)
        await sync.set_rsvp("E1", RSVPRecord(uid="u1", status="tentative", role="viola", updated_at=updated))

        docs = store.dump()
        assert docs["events/E1/availability/u1"] == {
            "uid": "u1", "role": "viola", "status": "tentative", "updatedAt": updated,
        }
        assert docs["events/E1/rsvps/u1"] == {"status": "tentative", "updatedAt": updated}
        assert docs["availability/E1_u1"] == {
            "uid": "u1", "role": "viola", "status": "tentative", "updatedAt": updated,
            "eventId": "E1", "source": "rsvp", "eventRef": "events/E1",
        }

    @pytest.mark.asyncio
    async def test_merge_preserves_unrelated_fields(self, sync, store):
        """Test upsert-with-merge keeps existing fields"""
        await store.set_document(canonical_ref("E1", "u1"), {"uid": "u1", "status": "no", "note": "late"})
        await store.set_document(flat_ref("E1", "u1"), {"compensatedHours": 3})

        await sync.set_rsvp("E1", {"uid": "u1", "status": "accepted"})

        docs = store.dump()
        assert docs["events/E1/availability/u1"]["note"] == "late"
        assert docs["events/E1/availability/u1"]["status"] == "accepted"
        assert docs["availability/E1_u1"]["compensatedHours"] == 3

    @pytest.mark.asyncio
    async def test_missing_updated_at_is_filled(self, sync):
        """Test the write is timestamped"""
        record = await sync.set_rsvp("E1", {"uid": "u1", "status": "declined"})
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_invalid_input_rejected_before_any_write(self, sync, store):
        """Test an unknown status writes nothing"""
        with pytest.raises(ValueError):
            await sync.set_rsvp("E1", {"uid": "u1", "status": "perhaps"})
        assert store.dump() == {}

    @pytest.mark.asyncio
    async def test_writes_are_sequential(self):
        """Test write order canonical, legacy, flat"""
        client = AsyncMock()
        sync = RSVPSynchronizer(client)

        await sync.set_rsvp("E1", {"uid": "u1", "status": "yes"})

        paths = [call.args[0].full_path for call in client.set_document.await_args_list]
        assert paths == ["events/E1/availability/u1", "events/E1/rsvps/u1", "availability/E1_u1"]
        assert all(call.kwargs["merge"] is True for call in client.set_document.await_args_list)
        assert client.set_document.await_args_list[1].args[1]["status"] == "accepted"


class TestPartialFailure:
    """Test a failing mirror write"""

    @pytest_asyncio.fixture
    async def failing_store(self):
        client = FailingMirrorClient("rsvps")
        await client.connect()
        yield client
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_mirror_two_failure_scenario(self, failing_store):
        """Test mirror 1 committed, mirror 3 never attempted, read still sees it"""
        sync = RSVPSynchronizer(failing_store)

        with pytest.raises(DocumentStoreError):
            await sync.set_rsvp("E1", {"uid": "u1", "status": "declined", "updatedAt": 123})

        docs = failing_store.dump()
        assert docs["events/E1/availability/u1"]["status"] == "declined"
        assert "events/E1/rsvps/u1" not in docs
        assert "availability/E1_u1" not in docs
        assert "availability/E1_u1" not in failing_store.attempted

        record = await sync.get_my_rsvp("E1", "u1")
        assert record.status == RSVPStatus.DECLINED
        assert record.updated_at == datetime(1970, 1, 1, 0, 0, 0, 123000, tzinfo=timezone.utc)


class TestGetRSVP:
    """Test mirror read priority"""

    @pytest.mark.asyncio
    async def test_not_found(self, sync):
        assert await sync.get_my_rsvp("E1", "nobody") is None
        assert await sync.find_rsvp("E1", "nobody") is None

    @pytest.mark.asyncio
    async def test_canonical_wins(self, sync, store):
        await store.set_document(canonical_ref("E1", "u1"), {"status": "accepted"})
        await store.set_document(legacy_ref("E1", "u1"), {"status": "no"})
        await store.set_document(flat_ref("E1", "u1"), {"status": "maybe"})

        source, record = await sync.find_rsvp("E1", "u1")
        assert source == RSVPSource.CANONICAL
        assert record.status == RSVPStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_legacy_then_flat(self, sync, store):
        """Test fallback order and no merging across mirrors"""
        await store.set_document(flat_ref("E1", "u1"), {"uid": "u1", "status": "maybe", "displayName": "Sam"})
        source, record = await sync.find_rsvp("E1", "u1")
        assert source == RSVPSource.FLAT
        assert record.status == RSVPStatus.TENTATIVE
        assert record.display_name == "Sam"

        await store.set_document(legacy_ref("E1", "u1"), {"status": "no"})
        source, record = await sync.find_rsvp("E1", "u1")
        assert source == RSVPSource.LEGACY
        assert record.status == RSVPStatus.DECLINED
        assert record.display_name is None

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self):
        """Test read failures surface to the caller"""
        client = AsyncMock()
        client.get_document.side_effect = DocumentStoreError("unavailable")

        with pytest.raises(DocumentStoreError):
            await RSVPSynchronizer(client).get_my_rsvp("E1", "u1")


class TestReconcile:
    """Test mirror divergence detection and repair"""

    @pytest.mark.asyncio
    async def test_consistent_mirrors(self, sync):
        await sync.set_rsvp("E1", {"uid": "u1", "status": "accepted"})
        await sync.set_rsvp("E1", {"uid": "u2", "status": "declined"})

        report = await sync.reconcile_event("E1")
        assert report.checked == 2
        assert report.repaired == 0

    @pytest.mark.asyncio
    async def test_repairs_divergent_and_missing_mirrors(self, sync, store):
        await sync.set_rsvp("E1", {"uid": "u1", "status": "accepted"})
        # canonical written alone, as after a failed set_rsvp
        await store.set_document(canonical_ref("E1", "u2"), {"uid": "u2", "status": "tentative"})
        # legacy vocabulary counts as agreeing
        await store.set_document(legacy_ref("E1", "u1"), {"status": "yes"}, merge=True)
        await store.set_document(flat_ref("E1", "u1"), {"status": "no"}, merge=True)

        report = await sync.reconcile_event("E1")

        assert report.checked == 2
        assert report.repaired_legacy == ["u2"]
        assert sorted(report.repaired_flat) == ["u1", "u2"]
        assert report.repaired == 2

        docs = store.dump()
        assert docs["events/E1/rsvps/u2"]["status"] == "tentative"
        assert docs["availability/E1_u1"]["status"] == "accepted"
        assert docs["availability/E1_u2"]["eventId"] == "E1"

        assert (await sync.reconcile_event("E1")).repaired == 0

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, sync, store):
        await store.set_document(canonical_ref("E1", "u1"), {"uid": "u1", "status": "accepted"})

        report = await sync.reconcile_event("E1", dry_run=True)

        assert report.repaired == 1
        assert not (await store.get_document(legacy_ref("E1", "u1"))).exists

    @pytest.mark.asyncio
    async def test_list_event_rsvps_filter(self, sync):
        await sync.set_rsvp("E1", {"uid": "b", "status": "accepted"})
        await sync.set_rsvp("E1", {"uid": "a", "status": "maybe"})
        await sync.set_rsvp("E2", {"uid": "c", "status": "accepted"})

        everyone = await sync.list_event_rsvps("E1")
        assert [record.uid for record in everyone] == ["a", "b"]

        accepted = await sync.list_event_rsvps("E1", [RSVPStatus.ACCEPTED])
        assert [record.uid for record in accepted] == ["b"]
