"""
Event エンティティモデル

Stored event documents come from several generations of clients: timestamps
may be Firestore timestamps, ISO strings or epoch milliseconds, and most
fields can be missing. ``normalize_event`` is the single boundary that turns
such a document into a strict ``Event``.
"""

import logging
import math
from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled Event"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventStatus(str, Enum):
    """イベントステータス列挙"""
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


# Spellings written by older clients
_STATUS_ALIASES = {
    "canceled": EventStatus.CANCELLED,
}


class RoleNeed(BaseModel):
    """Performers needed for one role (e.g. violin x4)"""
    role: str
    count: int = Field(default=0, ge=0)


class ClientInfo(BaseModel):
    """Originating client contact for booked performances"""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    org: Optional[str] = None
    notes: Optional[str] = None


class Event(BaseModel):
    """イベントエンティティ"""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str
    title: str = UNTITLED_EVENT
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    location: str = ""
    description: str = ""
    status: EventStatus = EventStatus.DRAFT

    roles_needed: List[RoleNeed] = Field(default_factory=list, alias="rolesNeeded")
    assigned_uids: List[str] = Field(default_factory=list, alias="assignedUids")
    client: Optional[ClientInfo] = None

    # 報酬計算用（管理者のみ設定）
    hourly_rate: Optional[float] = Field(None, alias="hourlyRate")
    event_duration_hours: Optional[float] = Field(None, alias="eventDurationHours")
    client_charge: Optional[float] = Field(None, alias="clientCharge")

    created_by: Optional[str] = Field(None, alias="createdBy")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    published_at: Optional[datetime] = Field(None, alias="publishedAt")

    @field_validator("start", "end", "published_at")
    @classmethod
    def _aware_optional(cls, v):
        return _as_utc(v) if v is not None else None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, v):
        return _as_utc(v)

    def update_timestamp(self) -> None:
        """更新タイムスタンプを現在時刻に設定"""
        self.updated_at = utcnow()

    def can_transition_to(self, new_status: EventStatus) -> bool:
        """ステータス遷移が可能かチェック"""
        transitions = {
            EventStatus.DRAFT: [
                EventStatus.PUBLISHED,
                EventStatus.CANCELLED
            ],
            EventStatus.PUBLISHED: [
                EventStatus.DRAFT,  # 非公開に戻す
                EventStatus.CANCELLED
            ],
            EventStatus.CANCELLED: [],  # 終了状態
        }

        return new_status in transitions.get(self.status, [])

    def transition_to(self, new_status: EventStatus) -> bool:
        """ステータス遷移を実行"""
        if not self.can_transition_to(new_status):
            return False
        self.status = new_status
        if new_status == EventStatus.PUBLISHED:
            self.published_at = utcnow()
        self.update_timestamp()
        return True

    def is_scheduled(self) -> bool:
        return self.start is not None

    def needed_headcount(self) -> int:
        return sum(need.count for need in self.roles_needed)

    def scheduled_hours(self) -> Optional[float]:
        """start→end の時間数（未設定・逆転時は None）"""
        if self.start is None or self.end is None:
            return None
        hours = (self.end - self.start).total_seconds() / 3600
        return hours if hours > 0 else None

    def compensated_hours(self) -> float:
        """Stored duration wins over the scheduled span"""
        return self.event_duration_hours or self.scheduled_hours() or 0.0

    def to_dict(self) -> Dict[str, Any]:
        """辞書形式に変換（Firestore保存用、camelCase）"""
        data = self.model_dump(by_alias=True, exclude={"id"})
        data["status"] = self.status.value
        return data


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Coerce a timestamp-like value to an aware UTC datetime.

    Accepts datetimes (including Firestore's DatetimeWithNanoseconds), dates,
    protobuf Timestamps, ``{"seconds", "nanoseconds"}`` mappings, ISO-8601
    strings and epoch milliseconds. Anything else, including unparseable
    strings, gives None.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, datetime):
            return _as_utc(value)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                return None
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text[-1] in "Zz":
                text = text[:-1] + "+00:00"
            return _as_utc(datetime.fromisoformat(text))
        if isinstance(value, Mapping):
            seconds = value.get("seconds", value.get("_seconds"))
            nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
            if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
                return None
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)

        # protobuf Timestamp
        converter = getattr(value, "ToDatetime", None)
        if callable(converter):
            return _as_utc(converter())
    except (ValueError, TypeError, OverflowError, OSError):
        return None

    return None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _coerce_status(value: Any, doc_id: str) -> EventStatus:
    if value is None:
        return EventStatus.DRAFT
    if isinstance(value, str):
        key = value.strip().lower()
        if key in _STATUS_ALIASES:
            return _STATUS_ALIASES[key]
        try:
            return EventStatus(key)
        except ValueError:
            pass
    logger.warning(f"Unknown status {value!r} on event {doc_id}, treating as draft")
    return EventStatus.DRAFT


def _coerce_roles(value: Any) -> List[RoleNeed]:
    if not isinstance(value, list):
        return []

    roles = []
    for entry in value:
        if not isinstance(entry, Mapping):
            continue
        role = _text(entry.get("role"))
        count = entry.get("count", 0)
        if not role or isinstance(count, bool):
            continue
        try:
            count = int(count)
        except (TypeError, ValueError):
            continue
        if count < 0:
            continue
        roles.append(RoleNeed(role=role, count=count))
    return roles


def _coerce_uids(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [uid for uid in value if isinstance(uid, str) and uid]


def _coerce_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return float(value)


def _coerce_client(value: Any) -> Optional[ClientInfo]:
    if not isinstance(value, Mapping):
        return None
    fields = {
        key: value[key] for key in ClientInfo.model_fields
        if isinstance(value.get(key), str)
    }
    return ClientInfo(**fields)


def normalize_event(doc_id: str, raw: Optional[Mapping]) -> Event:
    """Map a stored event document to an Event; never raises on bad data"""
    raw = raw or {}
    now = utcnow()

    title = _text(raw.get("title")) or UNTITLED_EVENT
    # Older documents store the date under "date"
    start_value = raw.get("start")
    if start_value is None:
        start_value = raw.get("date")

    created_by = raw.get("createdBy")

    return Event(
        id=doc_id,
        title=title,
        start=to_datetime(start_value),
        end=to_datetime(raw.get("end")),
        location=_text(raw.get("location")),
        description=_text(raw.get("description")),
        status=_coerce_status(raw.get("status"), doc_id),
        roles_needed=_coerce_roles(raw.get("rolesNeeded")),
        assigned_uids=_coerce_uids(raw.get("assignedUids")),
        client=_coerce_client(raw.get("client")),
        hourly_rate=_coerce_number(raw.get("hourlyRate")),
        event_duration_hours=_coerce_number(raw.get("eventDurationHours")),
        client_charge=_coerce_number(raw.get("clientCharge")),
        created_by=created_by if isinstance(created_by, str) else None,
        created_at=to_datetime(raw.get("createdAt")) or now,
        updated_at=to_datetime(raw.get("updatedAt")) or now,
        published_at=to_datetime(raw.get("publishedAt")),
    )
