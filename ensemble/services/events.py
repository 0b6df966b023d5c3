"""
Event feed and admin lifecycle operations
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Union
from uuid import uuid4

from ..integrations.firestore_client import (
    BatchWrite,
    DocumentReference,
    DocumentSnapshot,
    FirestoreClient,
    FirestoreQuery,
    QueryFilter,
    QueryOrder,
    Unsubscribe,
)
from ..models.event import ClientInfo, Event, EventStatus, RoleNeed, normalize_event, utcnow
from ..models.repository import DocumentNotFoundError, EventRepository

logger = logging.getLogger(__name__)

EventsCallback = Callable[[List[Event]], None]

# Subcollections removed together with their event
EVENT_SUBCOLLECTIONS = ("availability", "rsvps", "roster_members", "roster_summary")

UPDATABLE_FIELDS = {
    "title", "start", "end", "location", "description", "roles_needed",
    "assigned_uids", "client", "hourly_rate", "event_duration_hours", "client_charge",
}


class InvalidTransitionError(Exception):
    """Requested status change is not allowed from the current status"""
    pass


def _status_values(statuses: Iterable[Union[EventStatus, str]]) -> List[str]:
    values = []
    for status in statuses:
        value = EventStatus(status).value
        if value not in values:
            values.append(value)
    return values


def build_events_query(statuses: Optional[Iterable[Union[EventStatus, str]]] = None,
                       order_by_start: bool = True) -> FirestoreQuery:
    """events クエリ（status 1件は ==、複数件は in）"""
    filters = []
    values = _status_values(statuses) if statuses is not None else []
    if len(values) == 1:
        filters.append(QueryFilter(field="status", operator="==", value=values[0]))
    elif len(values) > 1:
        filters.append(QueryFilter(field="status", operator="in", value=values))

    orders = [QueryOrder(field="start", direction="asc")] if order_by_start else []
    return FirestoreQuery(collection="events", filters=filters, orders=orders)


def normalize_snapshots(snapshots: List[DocumentSnapshot]) -> List[Event]:
    return [normalize_event(snapshot.document_id, snapshot.data) for snapshot in snapshots]


def sort_by_start(events: List[Event]) -> List[Event]:
    """Ascending start, unscheduled events last"""
    return sorted(events, key=lambda event: (event.start is None, event.start or datetime.min))


class EventService:
    """イベントの購読・一覧・ライフサイクル管理"""

    def __init__(self, client: FirestoreClient):
        self.client = client
        self.repository = EventRepository(client)

    def subscribe_upcoming_events(
        self,
        statuses: Iterable[Union[EventStatus, str]],
        callback: EventsCallback
    ) -> Unsubscribe:
        """
        Live feed of events in ``statuses`` ordered by start.

        The callback receives the whole normalized list on every change.
        Events without a parseable start are left out of the feed.
        """
        values = _status_values(statuses)
        if not values:
            raise ValueError("At least one status is required")

        def _on_snapshot(snapshots: List[DocumentSnapshot]):
            events = [event for event in normalize_snapshots(snapshots) if event.is_scheduled()]
            events.sort(key=lambda event: event.start)
            callback(events)

        return self.client.watch_query(build_events_query(values), _on_snapshot)

    def observe_events(self, callback: EventsCallback) -> Unsubscribe:
        """Live feed of every event, unscheduled ones last"""

        def _on_snapshot(snapshots: List[DocumentSnapshot]):
            callback(sort_by_start(normalize_snapshots(snapshots)))

        return self.client.watch_query(build_events_query(order_by_start=False), _on_snapshot)

    async def list_events(self, statuses: Optional[Iterable[Union[EventStatus, str]]] = None) -> List[Event]:
        snapshots = await self.client.query_documents(build_events_query(statuses, order_by_start=False))
        return sort_by_start(normalize_snapshots(snapshots))

    async def get_event(self, event_id: str) -> Event:
        event = await self.repository.get_by_id(event_id)
        if event is None:
            raise DocumentNotFoundError(f"Event {event_id} not found")
        return event

    async def create_event(
        self,
        title: str,
        created_by: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        location: str = "",
        description: str = "",
        roles_needed: Optional[List[RoleNeed]] = None,
        client: Optional[ClientInfo] = None,
        event_id: Optional[str] = None
    ) -> Event:
        """新規イベントを draft として作成"""
        if start is not None and end is not None and end <= start:
            raise ValueError("Event end must be after start")

        now = utcnow()
        event = Event(
            id=event_id or uuid4().hex,
            title=title.strip() or "Untitled Event",
            start=start,
            end=end,
            location=location,
            description=description,
            status=EventStatus.DRAFT,
            roles_needed=roles_needed or [],
            client=client,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        await self.repository.create(event)
        logger.info(f"イベント作成: {event.id} ({event.title}) by {created_by}")
        return event

    async def update_event(self, event_id: str, **changes: Any) -> Event:
        """Overlay the given fields on an existing event"""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        event = await self.get_event(event_id)
        if event.status == EventStatus.CANCELLED:
            raise InvalidTransitionError(f"Event {event_id} is cancelled")

        for name, value in changes.items():
            setattr(event, name, value)
        if event.start is not None and event.end is not None and event.end <= event.start:
            raise ValueError("Event end must be after start")
        event.update_timestamp()

        await self.repository.save(event)
        return event

    async def _transition(self, event_id: str, new_status: EventStatus) -> Event:
        event = await self.get_event(event_id)
        current = event.status
        if not event.transition_to(new_status):
            raise InvalidTransitionError(
                f"Event {event_id} cannot move from {current.value} to {new_status.value}"
            )

        fields = {"status": event.status.value, "updatedAt": event.updated_at}
        if new_status == EventStatus.PUBLISHED:
            fields["publishedAt"] = event.published_at
        await self.repository.update_fields(event_id, fields)
        logger.info(f"イベントステータス変更: {event_id} {current.value} -> {new_status.value}")
        return event

    async def publish_event(self, event_id: str) -> Event:
        return await self._transition(event_id, EventStatus.PUBLISHED)

    async def unpublish_event(self, event_id: str) -> Event:
        return await self._transition(event_id, EventStatus.DRAFT)

    async def cancel_event(self, event_id: str) -> Event:
        return await self._transition(event_id, EventStatus.CANCELLED)

    async def delete_event(self, event_id: str) -> bool:
        """Delete the event, its subcollections and its flat availability mirrors"""
        if not await self.repository.exists(event_id):
            return False

        snapshots: List[DocumentReference] = []
        for name in EVENT_SUBCOLLECTIONS:
            docs = await self.client.query_documents(
                FirestoreQuery(collection=name, parent_path=f"events/{event_id}")
            )
            snapshots.extend(
                DocumentReference(collection=name, document_id=doc.document_id, parent_path=f"events/{event_id}")
                for doc in docs
            )
        flat = await self.client.query_documents(FirestoreQuery(
            collection="availability",
            filters=[QueryFilter(field="eventId", operator="==", value=event_id)]
        ))
        snapshots.extend(DocumentReference(collection="availability", document_id=doc.document_id) for doc in flat)

        operations = [BatchWrite(operation_type="delete", document_ref=ref) for ref in snapshots]
        await self.client.batch_write_chunked(operations)

        await self.repository.delete(event_id)
        logger.info(f"イベント削除: {event_id}（関連ドキュメント {len(operations)}件）")
        return True
