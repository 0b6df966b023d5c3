"""
サービス層 - イベント購読・出欠同期・名簿・レポート・セッション・依頼・アンケート
"""

from .events import EventService, InvalidTransitionError
from .rsvp import RSVPSynchronizer, RSVPSource, ReconcileReport
from .roster import RosterService, RosterEntry, RosterSummary
from .reports import ReportService, ParticipationTotals, count_by_bucket, to_csv
from .session import SessionContext, SessionState, NotSignedInError
from .inquiries import InquiryService
from .participants import ParticipantService, ParticipantInfo, merge_by_uid, normalize_participant_status
from .polls import PollService, PollCounts, PollInterest

__all__ = [
    "EventService",
    "InvalidTransitionError",
    "RSVPSynchronizer",
    "RSVPSource",
    "ReconcileReport",
    "RosterService",
    "RosterEntry",
    "RosterSummary",
    "ReportService",
    "ParticipationTotals",
    "count_by_bucket",
    "to_csv",
    "SessionContext",
    "SessionState",
    "NotSignedInError",
    "InquiryService",
    "ParticipantService",
    "ParticipantInfo",
    "merge_by_uid",
    "normalize_participant_status",
    "PollService",
    "PollCounts",
    "PollInterest",
]
