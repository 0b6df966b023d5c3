"""
RSVP / availability record model
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .event import to_datetime

logger = logging.getLogger(__name__)


class RSVPStatus(str, Enum):
    """参加回答ステータス"""
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    UNANSWERED = "unanswered"


# Vocabulary written by the availability/roster screens
LEGACY_STATUS_MAP = {
    "yes": RSVPStatus.ACCEPTED,
    "no": RSVPStatus.DECLINED,
    "maybe": RSVPStatus.TENTATIVE,
    "none": RSVPStatus.UNANSWERED,
}

LEGACY_BUCKETS = {
    RSVPStatus.ACCEPTED: "yes",
    RSVPStatus.TENTATIVE: "maybe",
    RSVPStatus.DECLINED: "no",
}


def parse_status(value: Any) -> Optional[RSVPStatus]:
    """Canonical or legacy status string to RSVPStatus, None if unrecognized"""
    if isinstance(value, RSVPStatus):
        return value
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if key in LEGACY_STATUS_MAP:
        return LEGACY_STATUS_MAP[key]
    try:
        return RSVPStatus(key)
    except ValueError:
        return None


def legacy_bucket(value: Any) -> Optional[str]:
    """Report bucket (yes/maybe/no) for a stored status, None when it has none"""
    status = parse_status(value)
    return LEGACY_BUCKETS.get(status) if status else None


class RSVPRecord(BaseModel):
    """メンバーの出欠回答"""

    model_config = ConfigDict(populate_by_name=True)

    uid: str
    display_name: Optional[str] = Field(None, alias="displayName")
    role: Optional[str] = None
    status: RSVPStatus = RSVPStatus.UNANSWERED
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator("uid")
    @classmethod
    def validate_uid(cls, v):
        if not v or not v.strip():
            raise ValueError("uid must not be empty")
        return v

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v):
        status = parse_status(v)
        if status is None:
            raise ValueError(f"Unknown RSVP status: {v!r}")
        return status

    @field_validator("updated_at", mode="before")
    @classmethod
    def validate_updated_at(cls, v):
        return to_datetime(v)

    @classmethod
    def from_document(cls, uid: str, data: Mapping) -> "RSVPRecord":
        """Lenient parse of a stored mirror document"""
        status = parse_status(data.get("status"))
        if status is None:
            logger.warning(f"Unrecognized RSVP status {data.get('status')!r} for {uid}")
            status = RSVPStatus.UNANSWERED

        display_name = data.get("displayName")
        role = data.get("role")
        return cls(
            uid=data.get("uid") or uid,
            display_name=display_name if isinstance(display_name, str) else None,
            role=role if isinstance(role, str) else None,
            status=status,
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Canonical mirror fields"""
        return {
            "uid": self.uid,
            "displayName": self.display_name,
            "role": self.role,
            "status": self.status.value,
            "updatedAt": self.updated_at,
        }
