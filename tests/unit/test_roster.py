"""
Unit tests for event rosters
"""

import pytest

from ensemble.integrations.firestore_client import DocumentReference
from ensemble.models.profile import UserProfile
from ensemble.models.rsvp import RSVPStatus
from ensemble.services.roster import UNKNOWN_MEMBER, RosterService
from ensemble.services.rsvp import RSVPSynchronizer, canonical_ref


@pytest.fixture
def roster(store, profiles):
    return RosterService(store, profiles)


async def _seed(store, profiles):
    await profiles.save(UserProfile(uid="u1", name="Zoe Park", sections=["winds"], instruments=["flute"]))
    await profiles.save(UserProfile(uid="u2", name="Ana Lee", sections=["strings"], instruments=["violin"]))
    await profiles.save(UserProfile(uid="u3", name="Ben Cho", sections=["strings"], instruments=["cello"]))

    sync = RSVPSynchronizer(store)
    await sync.set_rsvp("E1", {"uid": "u1", "status": "accepted"})
    await sync.set_rsvp("E1", {"uid": "u2", "status": "tentative"})
    await sync.set_rsvp("E1", {"uid": "u3", "status": "accepted"})
    await sync.set_rsvp("E1", {"uid": "u4", "status": "declined"})
    # written by the older availability screen
    await store.set_document(canonical_ref("E1", "u5"), {"uid": "u5", "status": "yes", "displayName": "Guest"})


class TestLoadRoster:
    """Test roster reads and ordering"""

    @pytest.mark.asyncio
    async def test_accepted_only_sorted_by_section_then_name(self, roster, store, profiles):
        await _seed(store, profiles)

        entries = await roster.load_roster("E1")

        assert [entry.uid for entry in entries] == ["u5", "u3", "u1"]
        assert entries[0].display_name == "Guest"
        assert entries[0].section is None
        assert entries[1].section == "strings"
        assert entries[1].instrument == "cello"
        assert all(entry.status == RSVPStatus.ACCEPTED for entry in entries)

    @pytest.mark.asyncio
    async def test_tentative_members_listed_after_accepted(self, roster, store, profiles):
        await _seed(store, profiles)

        entries = await roster.load_roster("E1", include_tentative=True)

        assert [entry.uid for entry in entries] == ["u5", "u3", "u1", "u2"]
        assert entries[-1].status == RSVPStatus.TENTATIVE

    @pytest.mark.asyncio
    async def test_unknown_member_fallback(self, roster, store):
        await store.set_document(canonical_ref("E1", "ghost"), {"status": "accepted"})

        entries = await roster.load_roster("E1")

        assert entries[0].uid == "ghost"
        assert entries[0].display_name == UNKNOWN_MEMBER

    @pytest.mark.asyncio
    async def test_empty_event(self, roster):
        assert await roster.load_roster("nothing") == []


class TestRebuildRoster:
    """Test persisted roster members and summary"""

    @pytest.mark.asyncio
    async def test_rebuild_writes_members_and_summary(self, roster, store, profiles):
        await _seed(store, profiles)
        stale = DocumentReference(collection="roster_members", document_id="u9", parent_path="events/E1")
        await store.set_document(stale, {"uid": "u9", "status": "accepted"})

        summary = await roster.rebuild_event_roster("E1")

        assert (summary.count, summary.yes_count, summary.maybe_count) == (4, 3, 1)

        docs = store.dump()
        members = sorted(path.rsplit("/", 1)[-1] for path in docs if path.startswith("events/E1/roster_members/"))
        assert members == ["u1", "u2", "u3", "u5"]
        assert docs["events/E1/roster_members/u2"]["status"] == "tentative"
        assert docs["events/E1/roster_members/u2"]["displayName"] == "Ana Lee"

        latest = docs["events/E1/roster_summary/latest"]
        assert (latest["count"], latest["yesCount"], latest["maybeCount"]) == (4, 3, 1)
        assert "updatedAt" in latest

    @pytest.mark.asyncio
    async def test_rebuild_without_tentative(self, roster, store, profiles):
        await _seed(store, profiles)

        summary = await roster.rebuild_event_roster("E1", include_tentative=False)

        assert (summary.count, summary.maybe_count) == (3, 0)


class TestRosterStatusSpellings:
    """Test stored status values outside the canonical spelling"""

    @pytest.mark.asyncio
    async def test_mixed_case_and_legacy_values(self, roster, store):
        await store.set_document(canonical_ref("E1", "a"), {"uid": "a", "status": "Yes", "displayName": "Ann"})
        await store.set_document(canonical_ref("E1", "b"), {"uid": "b", "status": "Accepted", "displayName": "Bo"})
        await store.set_document(canonical_ref("E1", "c"), {"uid": "c", "status": " MAYBE ", "displayName": "Cy"})
        await store.set_document(canonical_ref("E1", "d"), {"uid": "d", "status": "No", "displayName": "Di"})

        assert [entry.uid for entry in await roster.load_roster("E1")] == ["a", "b"]
        entries = await roster.load_roster("E1", include_tentative=True)
        assert [entry.uid for entry in entries] == ["a", "b", "c"]


class TestLargeRoster:
    """Test rosters larger than one write batch"""

    @pytest.mark.asyncio
    async def test_rebuild_splits_batches(self, roster, store):
        total = store.MAX_BATCH_SIZE + 1
        for i in range(total):
            uid = f"m{i:04d}"
            await store.set_document(canonical_ref("E1", uid), {"uid": uid, "status": "accepted"})

        summary = await roster.rebuild_event_roster("E1")

        assert summary.count == total
        docs = store.dump()
        members = [path for path in docs if path.startswith("events/E1/roster_members/")]
        assert len(members) == total
        assert docs["events/E1/roster_summary/latest"]["count"] == total
