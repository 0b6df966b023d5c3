"""
データモデル - Ensemble Hub

イベント・出欠・メンバープロフィールのエンティティと Firestore リポジトリ。
"""

from .event import Event, EventStatus, RoleNeed, ClientInfo, normalize_event, to_datetime
from .rsvp import RSVPRecord, RSVPStatus, parse_status, legacy_bucket
from .profile import UserProfile, MemberRole, EmergencyContact
from .inquiry import Inquiry, InquiryEvent, InquiryReport, YesResponse
from .repository import (
    BaseRepository,
    EventRepository,
    ProfileRepository,
    InquiryRepository,
    EncryptionManager,
    RepositoryError,
    DocumentNotFoundError,
    ValidationError,
    EncryptionError,
)

__all__ = [
    # Event関連
    "Event",
    "EventStatus",
    "RoleNeed",
    "ClientInfo",
    "normalize_event",
    "to_datetime",

    # RSVP関連
    "RSVPRecord",
    "RSVPStatus",
    "parse_status",
    "legacy_bucket",

    # Profile関連
    "UserProfile",
    "MemberRole",
    "EmergencyContact",

    # Inquiry関連
    "Inquiry",
    "InquiryEvent",
    "InquiryReport",
    "YesResponse",

    # Repository関連
    "BaseRepository",
    "EventRepository",
    "ProfileRepository",
    "InquiryRepository",
    "EncryptionManager",
    "RepositoryError",
    "DocumentNotFoundError",
    "ValidationError",
    "EncryptionError",
]
