"""
Event participants merged across every subcollection name clients have used
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..integrations.firestore_client import (
    DocumentSnapshot,
    DocumentStoreError,
    FirestoreClient,
    FirestoreQuery,
    Unsubscribe,
)
from ..models.event import to_datetime
from ..models.rsvp import RSVPStatus

logger = logging.getLogger(__name__)

ParticipantsCallback = Callable[[List["ParticipantInfo"]], None]

# events/{id}/<name>; "avaiablity" is a misspelling still present in old data
CANDIDATE_SUBCOLLECTIONS = ("participation", "availability", "avaiablity", "rsvps", "rsvp")

_GOING = {"going", "yes", "attending", "available", "confirm", "confirmed", "accepted"}
_MAYBE = {"maybe", "tentative", "unsure"}
_DECLINED = {"declined", "no", "unavailable", "cant", "can't", "cannot"}

_STATUS_RANK = {
    RSVPStatus.ACCEPTED: 3,
    RSVPStatus.TENTATIVE: 2,
    RSVPStatus.DECLINED: 1,
    RSVPStatus.UNANSWERED: 0,
}


def normalize_participant_status(value: Any) -> RSVPStatus:
    """Free-form availability value to RSVPStatus (booleans mean going / not going)"""
    if isinstance(value, bool):
        return RSVPStatus.ACCEPTED if value else RSVPStatus.DECLINED
    if isinstance(value, str):
        key = value.strip().lower()
        if key in _GOING:
            return RSVPStatus.ACCEPTED
        if key in _MAYBE:
            return RSVPStatus.TENTATIVE
        if key in _DECLINED:
            return RSVPStatus.DECLINED
    return RSVPStatus.UNANSWERED


class ParticipantInfo(BaseModel):
    """参加者1名分（複数スキーマを統合した結果）"""

    model_config = ConfigDict(populate_by_name=True)

    uid: str
    name: Optional[str] = None
    status: RSVPStatus = RSVPStatus.UNANSWERED
    section: Optional[str] = None
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


def _first_present(data: Mapping, keys: Iterable[str]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _first_text(data: Mapping, keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def participant_from_document(document_id: str, data: Mapping) -> ParticipantInfo:
    updated_at = None
    for key in ("updatedAt", "updated_at", "lastUpdated", "_updated"):
        updated_at = to_datetime(data.get(key))
        if updated_at is not None:
            break

    return ParticipantInfo(
        uid=_first_text(data, ("uid",)) or document_id,
        name=_first_text(data, ("name", "displayName")),
        status=normalize_participant_status(
            _first_present(data, ("status", "availability", "response", "rsvp", "going"))
        ),
        section=_first_text(data, ("section", "instrument")),
        updated_at=updated_at,
    )


def choose_better(current: Optional[ParticipantInfo], candidate: ParticipantInfo) -> ParticipantInfo:
    """
    Pick between two records for the same member.

    The more recently updated record wins; a dated record beats an undated
    one; otherwise the stronger status wins (accepted > tentative > declined
    > unanswered), and on a full tie the later record.
    """
    if current is None:
        return candidate
    if current.updated_at and candidate.updated_at:
        return current if current.updated_at > candidate.updated_at else candidate
    if current.updated_at or candidate.updated_at:
        return current if current.updated_at else candidate

    if _STATUS_RANK[current.status] > _STATUS_RANK[candidate.status]:
        return current
    return candidate


def merge_by_uid(groups: Iterable[List[ParticipantInfo]]) -> List[ParticipantInfo]:
    """One record per uid, in first-seen order"""
    merged: Dict[str, ParticipantInfo] = {}
    for group in groups:
        for participant in group:
            merged[participant.uid] = choose_better(merged.get(participant.uid), participant)
    return list(merged.values())


def _participants(snapshots: List[DocumentSnapshot]) -> List[ParticipantInfo]:
    return [participant_from_document(snapshot.document_id, snapshot.data) for snapshot in snapshots]


class ParticipantService:
    """イベント参加者の取得・購読"""

    def __init__(self, client: FirestoreClient, subcollections: Iterable[str] = CANDIDATE_SUBCOLLECTIONS):
        self.client = client
        self.subcollections = tuple(subcollections)

    def _query(self, event_id: str, subcollection: str) -> FirestoreQuery:
        if not event_id:
            raise ValueError("event_id must not be empty")
        return FirestoreQuery(collection=subcollection, parent_path=f"events/{event_id}")

    async def fetch_event_participants(self, event_id: str) -> List[ParticipantInfo]:
        """全候補サブコレクションを読み、uid ごとに統合"""
        groups = []
        for subcollection in self.subcollections:
            try:
                snapshots = await self.client.query_documents(self._query(event_id, subcollection))
            except DocumentStoreError as e:
                logger.warning(f"サブコレクション読み込み失敗（スキップ）: events/{event_id}/{subcollection} - {str(e)}")
                continue
            if snapshots:
                groups.append(_participants(snapshots))

        participants = merge_by_uid(groups)
        logger.debug(f"参加者取得: {event_id} {len(participants)} 名（{len(groups)} サブコレクション）")
        return participants

    def subscribe_event_participants(self, event_id: str, callback: ParticipantsCallback) -> Unsubscribe:
        """
        Live merged participant list for an event.

        Every candidate subcollection is watched; each change re-emits the
        merge of the latest snapshot from each one.
        """
        latest: Dict[str, List[ParticipantInfo]] = {}
        unsubscribes: List[Unsubscribe] = []

        def _emit():
            callback(merge_by_uid(latest[name] for name in self.subcollections if name in latest))

        def _listener(subcollection: str):
            def _on_snapshot(snapshots: List[DocumentSnapshot]):
                latest[subcollection] = _participants(snapshots)
                _emit()
            return _on_snapshot

        for subcollection in self.subcollections:
            unsubscribes.append(
                self.client.watch_query(self._query(event_id, subcollection), _listener(subcollection))
            )

        def _unsubscribe():
            for unsubscribe in unsubscribes:
                unsubscribe()
            unsubscribes.clear()

        return _unsubscribe
