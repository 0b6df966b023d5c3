"""
RSVP Synchronizer

A member's response to an event is stored three times:

1. ``events/{eventId}/availability/{uid}``  canonical record (all fields)
2. ``events/{eventId}/rsvps/{uid}``         legacy record (status + updatedAt)
3. ``availability/{eventId}_{uid}``         flat record for cross-event reports

Reads take the first mirror that exists in that order. Writes go to all three
one after another; a failure stops the sequence and is raised to the caller
with the earlier writes left in place. ``reconcile_event`` repairs mirrors 2
and 3 from the canonical record after such a partial write.
"""

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from ..integrations.firestore_client import (
    BatchWrite,
    DocumentReference,
    FirestoreClient,
    FirestoreQuery,
)
from ..models.event import utcnow
from ..models.rsvp import RSVPRecord, RSVPStatus, parse_status

logger = logging.getLogger(__name__)

FLAT_SOURCE_TAG = "rsvp"


class RSVPSource(str, Enum):
    """RSVPの保存先"""
    CANONICAL = "availability"
    LEGACY = "rsvps"
    FLAT = "flat"


def _require(event_id: str, uid: str):
    if not event_id:
        raise ValueError("event_id must not be empty")
    if not uid:
        raise ValueError("uid must not be empty")


def canonical_ref(event_id: str, uid: str) -> DocumentReference:
    _require(event_id, uid)
    return DocumentReference(collection="availability", document_id=uid, parent_path=f"events/{event_id}")


def legacy_ref(event_id: str, uid: str) -> DocumentReference:
    _require(event_id, uid)
    return DocumentReference(collection="rsvps", document_id=uid, parent_path=f"events/{event_id}")


def flat_ref(event_id: str, uid: str) -> DocumentReference:
    _require(event_id, uid)
    return DocumentReference(collection="availability", document_id=f"{event_id}_{uid}")


def mirror_refs(event_id: str, uid: str) -> List[Tuple[RSVPSource, DocumentReference]]:
    """Read priority order"""
    return [
        (RSVPSource.CANONICAL, canonical_ref(event_id, uid)),
        (RSVPSource.LEGACY, legacy_ref(event_id, uid)),
        (RSVPSource.FLAT, flat_ref(event_id, uid)),
    ]


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    # merge 書き込みで既存値を None で潰さない
    return {key: value for key, value in data.items() if value is not None}


class ReconcileReport(BaseModel):
    """ミラー整合性チェック結果"""
    event_id: str
    checked: int = 0
    repaired_legacy: List[str] = Field(default_factory=list)
    repaired_flat: List[str] = Field(default_factory=list)

    @property
    def repaired(self) -> int:
        return len(set(self.repaired_legacy) | set(self.repaired_flat))


class RSVPSynchronizer:
    """3箇所のRSVPミラーの読み書き"""

    def __init__(self, client: FirestoreClient):
        self.client = client

    async def find_rsvp(self, event_id: str, uid: str) -> Optional[Tuple[RSVPSource, RSVPRecord]]:
        """First existing mirror and its record, None when no mirror has one"""
        for source, doc_ref in mirror_refs(event_id, uid):
            snapshot = await self.client.get_document(doc_ref)
            if snapshot.exists:
                logger.debug(f"RSVP取得: {doc_ref.full_path}")
                return source, RSVPRecord.from_document(uid, snapshot.data)
        return None

    async def get_my_rsvp(self, event_id: str, uid: str) -> Optional[RSVPRecord]:
        found = await self.find_rsvp(event_id, uid)
        return found[1] if found else None

    async def set_rsvp(self, event_id: str, rsvp: Union[RSVPRecord, Mapping]) -> RSVPRecord:
        """
        Write the response to the canonical, legacy and flat mirrors in order.

        Args:
            event_id: イベントID
            rsvp: RSVPRecord or a mapping with at least ``uid`` and ``status``

        Raises:
            DocumentStoreError: a mirror write failed; mirrors before it keep
                the new value and the ones after it were not written
        """
        record = rsvp if isinstance(rsvp, RSVPRecord) else RSVPRecord.model_validate(dict(rsvp))
        if record.updated_at is None:
            record = record.model_copy(update={"updated_at": utcnow()})

        canonical = _compact(record.to_dict())
        legacy = {"status": record.status.value, "updatedAt": record.updated_at}
        flat = {
            **canonical,
            "eventId": event_id,
            "source": FLAT_SOURCE_TAG,
            "eventRef": f"events/{event_id}",
        }

        await self.client.set_document(canonical_ref(event_id, record.uid), canonical, merge=True)
        await self.client.set_document(legacy_ref(event_id, record.uid), legacy, merge=True)
        await self.client.set_document(flat_ref(event_id, record.uid), flat, merge=True)

        logger.info(f"RSVP更新: event={event_id} uid={record.uid} status={record.status.value}")
        return record

    async def list_event_rsvps(
        self,
        event_id: str,
        statuses: Optional[List[RSVPStatus]] = None
    ) -> List[RSVPRecord]:
        """Canonical records of one event, optionally filtered by status"""
        snapshots = await self.client.query_documents(
            FirestoreQuery(collection="availability", parent_path=f"events/{event_id}")
        )
        records = [RSVPRecord.from_document(snapshot.document_id, snapshot.data) for snapshot in snapshots]
        if statuses is not None:
            records = [record for record in records if record.status in statuses]
        return sorted(records, key=lambda record: record.uid)

    async def reconcile_event(self, event_id: str, dry_run: bool = False) -> ReconcileReport:
        """
        Detect mirrors that disagree with the canonical record and rewrite them.

        A legacy or flat mirror is divergent when it is missing or its status
        parses to a different value. Repairs are written in batches.
        """
        report = ReconcileReport(event_id=event_id)
        operations: List[BatchWrite] = []

        for record in await self.list_event_rsvps(event_id):
            report.checked += 1
            legacy_doc = await self.client.get_document(legacy_ref(event_id, record.uid))
            if not legacy_doc.exists or parse_status(legacy_doc.data.get("status")) != record.status:
                report.repaired_legacy.append(record.uid)
                operations.append(BatchWrite(
                    operation_type="set",
                    document_ref=legacy_ref(event_id, record.uid),
                    data=_compact({"status": record.status.value, "updatedAt": record.updated_at}),
                ))

            flat_doc = await self.client.get_document(flat_ref(event_id, record.uid))
            if not flat_doc.exists or parse_status(flat_doc.data.get("status")) != record.status:
                report.repaired_flat.append(record.uid)
                operations.append(BatchWrite(
                    operation_type="set",
                    document_ref=flat_ref(event_id, record.uid),
                    data={
                        **_compact(record.to_dict()),
                        "eventId": event_id,
                        "source": FLAT_SOURCE_TAG,
                        "eventRef": f"events/{event_id}",
                    },
                ))

        if operations and not dry_run:
            await self.client.batch_write_chunked(operations)

        if report.repaired:
            logger.warning(
                f"RSVPミラー不整合: event={event_id} legacy={len(report.repaired_legacy)} "
                f"flat={len(report.repaired_flat)}{' (dry run)' if dry_run else ''}"
            )
        else:
            logger.info(f"RSVPミラー整合: event={event_id} ({report.checked}件)")
        return report
