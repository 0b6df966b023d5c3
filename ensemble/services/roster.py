"""
イベント参加者名簿（roster）

Built from the canonical availability records of an event and enriched with
member profiles. ``rebuild_event_roster`` persists the result under
``events/{eventId}/roster_members`` and ``events/{eventId}/roster_summary/latest``.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..integrations.firestore_client import (
    BatchWrite,
    DocumentReference,
    FirestoreClient,
    FirestoreQuery,
)
from ..models.event import utcnow
from ..models.repository import ProfileRepository
from ..models.rsvp import RSVPRecord, RSVPStatus

logger = logging.getLogger(__name__)

UNKNOWN_MEMBER = "Unknown Member"


class RosterEntry(BaseModel):
    """名簿の1行"""

    model_config = ConfigDict(populate_by_name=True)

    uid: str
    status: RSVPStatus
    display_name: str = Field(UNKNOWN_MEMBER, alias="displayName")
    section: Optional[str] = None
    instrument: Optional[str] = None

    def sort_key(self):
        return (self.status != RSVPStatus.ACCEPTED, self.section or "", self.display_name.casefold())

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["status"] = self.status.value
        return data


class RosterSummary(BaseModel):
    count: int = 0
    yes_count: int = Field(0, alias="yesCount")
    maybe_count: int = Field(0, alias="maybeCount")

    model_config = ConfigDict(populate_by_name=True)


def summarize(entries: List[RosterEntry]) -> RosterSummary:
    return RosterSummary(
        count=len(entries),
        yes_count=sum(1 for entry in entries if entry.status == RSVPStatus.ACCEPTED),
        maybe_count=sum(1 for entry in entries if entry.status == RSVPStatus.TENTATIVE),
    )


class RosterService:
    """名簿の読み込みと永続化"""

    def __init__(self, client: FirestoreClient, profiles: Optional[ProfileRepository] = None):
        self.client = client
        self.profiles = profiles or ProfileRepository(client)

    async def load_roster(self, event_id: str, include_tentative: bool = False) -> List[RosterEntry]:
        """
        Accepted (and optionally tentative) members of an event.

        Sorted accepted first, then by section, then by display name.
        """
        statuses = [RSVPStatus.ACCEPTED]
        if include_tentative:
            statuses.append(RSVPStatus.TENTATIVE)

        # status is filtered after parsing; stored spellings vary in case and vocabulary
        snapshots = await self.client.query_documents(
            FirestoreQuery(collection="availability", parent_path=f"events/{event_id}")
        )
        records = [RSVPRecord.from_document(snapshot.document_id, snapshot.data) for snapshot in snapshots]
        records = [record for record in records if record.status in statuses]
        if not records:
            return []

        profiles = await self.profiles.get_many([record.uid for record in records])

        entries = []
        for record in records:
            profile = profiles.get(record.uid)
            if profile is None:
                logger.debug(f"プロフィール未登録: {record.uid}")
            display_name = (profile.display_name if profile else "") or record.display_name or UNKNOWN_MEMBER
            entries.append(RosterEntry(
                uid=record.uid,
                status=record.status,
                display_name=display_name,
                section=profile.primary_section if profile else None,
                instrument=profile.primary_instrument if profile else None,
            ))

        entries.sort(key=RosterEntry.sort_key)
        return entries

    async def rebuild_event_roster(self, event_id: str, include_tentative: bool = True) -> RosterSummary:
        """Rewrite roster_members/* and roster_summary/latest (summary written last)"""
        entries = await self.load_roster(event_id, include_tentative=include_tentative)
        parent = f"events/{event_id}"
        now = utcnow()

        operations: List[BatchWrite] = []
        keep = {entry.uid for entry in entries}
        current = await self.client.query_documents(FirestoreQuery(collection="roster_members", parent_path=parent))
        for snapshot in current:
            if snapshot.document_id not in keep:
                operations.append(BatchWrite(
                    operation_type="delete",
                    document_ref=DocumentReference(
                        collection="roster_members", document_id=snapshot.document_id, parent_path=parent
                    )
                ))

        for entry in entries:
            operations.append(BatchWrite(
                operation_type="set",
                document_ref=DocumentReference(collection="roster_members", document_id=entry.uid, parent_path=parent),
                data={**entry.to_dict(), "updatedAt": now}
            ))

        summary = summarize(entries)
        operations.append(BatchWrite(
            operation_type="set",
            document_ref=DocumentReference(collection="roster_summary", document_id="latest", parent_path=parent),
            data={**summary.model_dump(by_alias=True), "updatedAt": now}
        ))

        await self.client.batch_write_chunked(operations)
        logger.info(
            f"名簿再構築: event={event_id} count={summary.count} "
            f"yes={summary.yes_count} maybe={summary.maybe_count}"
        )
        return summary
