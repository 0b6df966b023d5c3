"""
Member interest polls (social_polls/{pollId}) with denormalized counters
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..integrations.firestore_client import (
    DocumentReference,
    DocumentSnapshot,
    FirestoreClient,
    FirestoreQuery,
    Unsubscribe,
)
from ..models.event import utcnow
from .session import NotSignedInError, SessionState

logger = logging.getLogger(__name__)

POLL_COLLECTION = "social_polls"
DEFAULT_POLL_ID = "halloween2025"
DEFAULT_POLL_TITLE = "Halloween Social 2025"


class PollInterest(str, Enum):
    """アンケート回答"""
    YES = "yes"
    MAYBE = "maybe"
    NO = "no"


class PollCounts(BaseModel):
    """集計値（管理画面用）"""

    model_config = ConfigDict(populate_by_name=True)

    yes: int = 0
    maybe: int = 0
    no: int = 0
    responses: int = 0
    pledges_cents_total: int = Field(0, alias="pledgesCentsTotal")

    @classmethod
    def from_poll_document(cls, data: Optional[Dict[str, Any]]) -> "PollCounts":
        data = data or {}
        counts = data.get("counts") or {}
        return cls(
            yes=counts.get("yes", 0),
            maybe=counts.get("maybe", 0),
            no=counts.get("no", 0),
            responses=data.get("responses", 0),
            pledges_cents_total=data.get("pledgesCentsTotal", 0),
        )


PollCountsCallback = Callable[[PollCounts], None]


def parse_interest(value: Union[PollInterest, str]) -> PollInterest:
    try:
        return PollInterest(value.strip().lower() if isinstance(value, str) else value)
    except ValueError:
        raise ValueError(f"Unknown poll answer: {value!r}") from None


def normalize_pledge(value: Any) -> int:
    """Pledge in whole cents, never negative"""
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Invalid pledge: {value!r}")
    return max(0, round(value))


class PollService:
    """メンバーアンケート（回答・集計・購読）"""

    def __init__(self, client: FirestoreClient, poll_id: str = DEFAULT_POLL_ID, title: str = DEFAULT_POLL_TITLE):
        self.client = client
        self.poll_id = poll_id
        self.title = title

    @property
    def poll_ref(self) -> DocumentReference:
        return DocumentReference(collection=POLL_COLLECTION, document_id=self.poll_id)

    def _member_ref(self, subcollection: str, uid: str) -> DocumentReference:
        return DocumentReference(
            collection=subcollection, document_id=uid, parent_path=f"{POLL_COLLECTION}/{self.poll_id}"
        )

    async def ensure_poll(self) -> DocumentReference:
        """集計ドキュメントが無ければゼロで作成"""
        if not (await self.client.get_document(self.poll_ref)).exists:
            await self.client.set_document(self.poll_ref, {
                "title": self.title,
                "createdAt": utcnow(),
                "counts": {"yes": 0, "maybe": 0, "no": 0},
                "pledgesCentsTotal": 0,
                "responses": 0,
            })
            logger.info(f"アンケート作成: {self.poll_id}")
        return self.poll_ref

    async def submit_response(
        self,
        state: SessionState,
        interest: Union[PollInterest, str],
        pledge_cents: Any = 0
    ) -> PollCounts:
        """
        Record the signed-in member's answer and adjust the poll counters.

        A resubmission moves the member's count to the new answer and replaces
        their previous pledge instead of adding to it. Counters are updated by
        read-modify-write, so concurrent submissions can race.
        """
        if not state.signed_in:
            raise NotSignedInError("Must be signed in to answer a poll")

        answer = parse_interest(interest)
        pledge = normalize_pledge(pledge_cents)
        await self.ensure_poll()
        now = utcnow()

        name = state.profile.display_name if state.profile else None
        await self.client.set_document(self._member_ref("responses", state.uid), {
            "uid": state.uid,
            "name": name or None,
            "email": state.email,
            "interest": answer.value,
            "pledgeCents": pledge,
            "updatedAt": now,
        }, merge=True)

        marker_ref = self._member_ref("markers", state.uid)
        marker = await self.client.get_document(marker_ref)
        previous = marker.data.get("interest") if marker.exists else None
        previous_pledge = marker.data.get("pledgeCents", 0) if marker.exists else 0
        await self.client.set_document(
            marker_ref, {"interest": answer.value, "pledgeCents": pledge, "updatedAt": now}, merge=True
        )

        counts = await self.get_counts()
        tallies = {"yes": counts.yes, "maybe": counts.maybe, "no": counts.no}
        if previous in tallies:
            tallies[previous] = max(0, tallies[previous] - 1)
        tallies[answer.value] += 1

        updated = PollCounts(
            **tallies,
            responses=counts.responses + (0 if previous else 1),
            pledges_cents_total=max(0, counts.pledges_cents_total - previous_pledge + pledge),
        )
        await self.client.set_document(self.poll_ref, {
            "counts": tallies,
            "responses": updated.responses,
            "pledgesCentsTotal": updated.pledges_cents_total,
            "updatedAt": now,
        }, merge=True)

        logger.info(f"アンケート回答: {self.poll_id}/{state.uid} -> {answer.value} ({previous or '初回'})")
        return updated

    async def get_counts(self) -> PollCounts:
        snapshot = await self.client.get_document(self.poll_ref)
        return PollCounts.from_poll_document(snapshot.data if snapshot.exists else None)

    def watch_counts(self, callback: PollCountsCallback) -> Unsubscribe:
        """集計値のライブ購読（ドキュメントが無い間はゼロ）"""

        def _on_snapshot(snapshots: List[DocumentSnapshot]):
            data = next((s.data for s in snapshots if s.document_id == self.poll_id), None)
            callback(PollCounts.from_poll_document(data))

        return self.client.watch_query(FirestoreQuery(collection=POLL_COLLECTION), _on_snapshot)
