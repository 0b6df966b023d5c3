"""
Availability and participation reports (CSV export via pandas)
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from ..integrations.firestore_client import DocumentSnapshot, FirestoreClient, FirestoreQuery, QueryFilter
from ..models.event import Event, EventStatus
from ..models.rsvp import RSVPStatus, legacy_bucket, parse_status
from .events import EventService

logger = logging.getLogger(__name__)

BUCKETS = ("yes", "maybe", "no")


def count_by_bucket(statuses: Iterable[Any]) -> Dict[str, int]:
    """
    Count stored statuses per report bucket.

    Canonical and legacy spellings land in the same bucket
    (accepted/yes, tentative/maybe, declined/no); anything else, including
    ``unanswered``, is not counted.
    """
    counts = {bucket: 0 for bucket in BUCKETS}
    for status in statuses:
        bucket = legacy_bucket(status)
        if bucket in counts:
            counts[bucket] += 1
    return counts


def _iso(value) -> str:
    return value.isoformat() if value is not None else ""


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class ParticipantLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    status: Optional[RSVPStatus] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    hours: float = 0.0
    rate: float = 0.0

    @property
    def payout(self) -> float:
        return self.hours * self.rate


class ParticipationTotals(BaseModel):
    """イベント毎の参加集計"""
    event_id: str
    title: str
    start: Optional[Any] = None
    participants: List[ParticipantLine] = Field(default_factory=list)
    headcount_going: int = 0
    total_comp_hours: float = 0.0
    total_payout: float = 0.0

    def to_row(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "title": self.title,
            "start": _iso(self.start),
            "headcountGoing": self.headcount_going,
            "totalCompHours": self.total_comp_hours,
            "totalPayout": self.total_payout,
        }


def compute_participation(event: Event, documents: Sequence[DocumentSnapshot]) -> ParticipationTotals:
    """
    Aggregate accepted members of one event.

    Hours come from the member's ``compensatedHours`` override, else the
    event's compensated hours; the rate from ``hourlyRateOverride``, else the
    event's ``hourlyRate`` (0 when unset).
    """
    totals = ParticipationTotals(event_id=event.id, title=event.title, start=event.start)
    for doc in documents:
        data = doc.data
        status = parse_status(data.get("status"))
        line = ParticipantLine(uid=data.get("uid") or doc.document_id, status=status,
                               display_name=data.get("displayName") if isinstance(data.get("displayName"), str) else None)
        totals.participants.append(line)
        if status != RSVPStatus.ACCEPTED:
            continue

        hours = _number(data.get("compensatedHours"))
        rate = _number(data.get("hourlyRateOverride"))
        line.hours = hours if hours is not None else event.compensated_hours()
        line.rate = rate if rate is not None else (event.hourly_rate or 0.0)

        totals.headcount_going += 1
        totals.total_comp_hours += line.hours
        totals.total_payout += line.payout
    return totals


def to_csv(rows: List[Dict[str, Any]], headers: Optional[List[str]] = None) -> str:
    """Rows to CSV text; columns default to the union of keys in first-seen order"""
    if not rows:
        return ""
    columns = headers or list(dict.fromkeys(key for row in rows for key in row))
    return pd.DataFrame(rows, columns=columns).to_csv(index=False)


def write_csv(rows: List[Dict[str, Any]], path: Union[str, Path], headers: Optional[List[str]] = None) -> Path:
    path = Path(path)
    path.write_text(to_csv(rows, headers), encoding="utf-8")
    logger.info(f"CSV出力: {path} ({len(rows)}行)")
    return path


class ReportService:
    """管理者向けレポート"""

    def __init__(self, client: FirestoreClient, events: Optional[EventService] = None):
        self.client = client
        self.events = events or EventService(client)

    async def fetch_availability(self, event_id: str) -> List[DocumentSnapshot]:
        """
        Availability documents of an event.

        The per-event canonical subcollection is preferred; events with no
        canonical documents fall back to the flat mirror filtered on ``eventId``.
        """
        canonical = await self.client.query_documents(
            FirestoreQuery(collection="availability", parent_path=f"events/{event_id}")
        )
        if canonical:
            return canonical
        logger.debug(f"正規サブコレクションなし、フラットミラーを参照: {event_id}")
        return await self.client.query_documents(FirestoreQuery(
            collection="availability",
            filters=[QueryFilter(field="eventId", operator="==", value=event_id)]
        ))

    async def availability_summary(self, statuses: Optional[List[EventStatus]] = None) -> List[Dict[str, Any]]:
        """One row per event: Event, Start, End, Yes, Maybe, No"""
        rows = []
        for event in await self.events.list_events(statuses):
            documents = await self.fetch_availability(event.id)
            counts = count_by_bucket(doc.data.get("status") for doc in documents)
            rows.append({
                "Event": event.title or event.id,
                "Start": _iso(event.start),
                "End": _iso(event.end),
                "Yes": counts["yes"],
                "Maybe": counts["maybe"],
                "No": counts["no"],
            })
        return rows

    async def availability_detail(self, statuses: Optional[List[EventStatus]] = None) -> List[Dict[str, Any]]:
        """One row per (event, member) response"""
        rows = []
        for event in await self.events.list_events(statuses):
            for doc in await self.fetch_availability(event.id):
                rows.append({
                    "eventId": event.id,
                    "title": event.title,
                    "uid": doc.data.get("uid") or doc.document_id,
                    "status": doc.data.get("status"),
                    "start": _iso(event.start),
                    "end": _iso(event.end),
                })
        return rows

    async def participation_totals(self, statuses: Optional[List[EventStatus]] = None) -> List[ParticipationTotals]:
        results = []
        for event in await self.events.list_events(statuses):
            documents = await self.client.query_documents(
                FirestoreQuery(collection="availability", parent_path=f"events/{event.id}")
            )
            results.append(compute_participation(event, documents))
        logger.debug(f"参加集計: {len(results)}イベント")
        return results
