"""
Client booking inquiry model

Inquiries arrive from the public booking/contact forms and are stored at
``inquiries/{id}`` with status ``new`` for admin review. Members answer them
under ``inquiries/{id}/responses/{uid}``.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .event import to_datetime, utcnow

INQUIRY_NEW = "new"
UNTITLED_INQUIRY = "(untitled inquiry)"


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class InquiryEvent(BaseModel):
    """依頼されたイベントの概要（フォーム入力のまま）"""
    title: Optional[str] = None
    date: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    location: Optional[str] = None


class InquiryMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_agent: Optional[str] = Field(None, alias="userAgent")
    tz: Optional[str] = None


class Inquiry(BaseModel):
    """出演依頼"""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    email: str
    phone: Optional[str] = None
    org: Optional[str] = None
    message: Optional[str] = None
    event: InquiryEvent = Field(default_factory=InquiryEvent)
    status: str = INQUIRY_NEW
    meta: InquiryMeta = Field(default_factory=InquiryMeta)

    # Report fields derived from the form
    title: Optional[str] = None
    date: Optional[datetime] = None
    client_name: Optional[str] = Field(None, alias="clientName")
    location: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = (v or "").strip()
        if "@" not in v:
            raise ValueError(f"Invalid email: {v!r}")
        return v

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v):
        return to_datetime(v)

    @classmethod
    def from_public_payload(cls, payload: Mapping) -> "Inquiry":
        """
        Build a new inquiry from a booking form submission.

        Optional contact fields default to None, status is always ``new`` and
        ``title``/``date``/``clientName``/``location`` are derived from the
        event section so the inquiry shows up in date range reports.
        """
        event = InquiryEvent.model_validate(dict(payload.get("event") or {}))
        meta = InquiryMeta.model_validate(dict(payload.get("meta") or {}))
        name = payload.get("name") or ""

        return cls(
            name=name,
            email=payload.get("email") or "",
            phone=_optional_text(payload.get("phone")),
            org=_optional_text(payload.get("org")),
            message=_optional_text(payload.get("message")),
            event=event,
            meta=meta,
            title=event.title,
            date=event.date or event.start,
            client_name=_optional_text(payload.get("org")) or _optional_text(name),
            location=event.location,
        )

    @classmethod
    def from_dict(cls, document_id: str, data: Dict[str, Any]) -> "Inquiry":
        payload = dict(data)
        payload["id"] = document_id
        payload.setdefault("name", payload.get("clientName") or "(unknown)")
        payload.setdefault("email", "unknown@invalid")
        payload["event"] = payload.get("event") or {}
        payload["meta"] = payload.get("meta") or {}
        for key in ("createdAt", "updatedAt"):
            payload[key] = to_datetime(payload.get(key)) or utcnow()
        return cls.model_validate(payload)

    def to_dict(self) -> Dict[str, Any]:
        """Firestore保存用（camelCase、日付なしは date を書かない）"""
        return self.model_dump(by_alias=True, exclude={"id"} if self.date else {"id", "date"})


class YesResponse(BaseModel):
    """依頼に「参加可」と答えたメンバー"""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    name: Optional[str] = None
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class InquiryReport(BaseModel):
    """期間レポートの1件"""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = UNTITLED_INQUIRY
    date: Optional[datetime] = None
    status: Optional[str] = None
    client_name: Optional[str] = Field(None, alias="clientName")
    location: Optional[str] = None
    yes_list: List[YesResponse] = Field(default_factory=list, alias="yesList")

    @property
    def yes_count(self) -> int:
        return len(self.yes_list)

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date.isoformat() if self.date else "",
            "status": self.status or "",
            "clientName": self.client_name or "",
            "location": self.location or "",
            "yesCount": self.yes_count,
            "yesNames": "; ".join(response.name or response.user_id for response in self.yes_list),
        }
