"""
Member profile model
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .event import to_datetime


class MemberRole(str, Enum):
    """Dashboard roles, highest privilege first"""
    ADMIN = "admin"
    PERFORMER = "performer"
    MEMBER = "member"


class EmergencyContact(BaseModel):
    name: str
    phone: str
    relation: Optional[str] = None


class UserProfile(BaseModel):
    """メンバープロフィール"""

    model_config = ConfigDict(populate_by_name=True)

    uid: str
    name: str = ""
    email: str = ""
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    year: Optional[str] = None
    major: Optional[str] = None
    instruments: List[str] = Field(default_factory=list)
    sections: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)
    emergency_contact: Optional[EmergencyContact] = Field(None, alias="emergencyContact")
    pronouns: Optional[str] = None
    bio: Optional[str] = None
    is_returning: Optional[bool] = Field(None, alias="isReturning")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def validate_timestamps(cls, v):
        return to_datetime(v)

    @field_validator("instruments", "sections", "roles", mode="before")
    @classmethod
    def validate_string_lists(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        return [item for item in v if isinstance(item, str) and item]

    @property
    def display_name(self) -> str:
        return self.name or self.email or ""

    @property
    def primary_instrument(self) -> Optional[str]:
        return self.instruments[0] if self.instruments else None

    @property
    def primary_section(self) -> Optional[str]:
        return self.sections[0] if self.sections else None

    def has_role(self, role: MemberRole) -> bool:
        return role.value in self.roles

    def to_dict(self) -> Dict[str, Any]:
        """Firestore保存用（camelCase）"""
        return self.model_dump(by_alias=True, exclude={"uid"})

    @classmethod
    def from_dict(cls, uid: str, data: Dict[str, Any]) -> "UserProfile":
        """Stored profile to model; a legacy single ``role`` field is folded into ``roles``"""
        payload = dict(data)
        payload.pop("uid", None)
        legacy_role = payload.pop("role", None)
        roles = payload.get("roles") or []
        if isinstance(legacy_role, str) and legacy_role and legacy_role not in roles:
            payload["roles"] = [*roles, legacy_role]
        if not payload.get("name"):
            full_name = " ".join(
                part for part in (payload.get("firstName"), payload.get("lastName"))
                if isinstance(part, str) and part
            )
            payload["name"] = payload.get("displayName") or full_name
        for single, plural in (("instrument", "instruments"), ("section", "sections")):
            legacy_value = payload.pop(single, None)
            if isinstance(legacy_value, str) and legacy_value and not payload.get(plural):
                payload[plural] = [legacy_value]
        return cls(uid=uid, **payload)
