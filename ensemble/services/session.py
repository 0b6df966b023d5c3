"""
Signed-in member session

One SessionContext is owned by the caller (CLI command, request handler) and
passed to whatever needs the current member. Listeners are notified with an
immutable SessionState after every sign-in, sign-out or profile reload.
"""

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict

from ..config import Settings
from ..integrations.firestore_client import Unsubscribe
from ..models.profile import MemberRole, UserProfile
from ..models.repository import ProfileRepository

logger = logging.getLogger(__name__)


class NotSignedInError(Exception):
    """Operation requires a signed-in member"""
    pass


class SessionState(BaseModel):
    """セッションのスナップショット"""

    model_config = ConfigDict(frozen=True)

    uid: Optional[str] = None
    email: Optional[str] = None
    profile: Optional[UserProfile] = None
    role: Optional[MemberRole] = None

    @property
    def signed_in(self) -> bool:
        return self.uid is not None


SessionListener = Callable[[SessionState], None]


def resolve_role(
    settings: Settings,
    email: Optional[str],
    profile: Optional[UserProfile] = None,
    claims: Optional[Dict[str, Any]] = None
) -> MemberRole:
    """Highest role granted by custom claims, profile roles or the email allowlists"""
    claims = claims or {}
    if claims.get("admin") or (profile and profile.has_role(MemberRole.ADMIN)) or settings.is_admin_email(email):
        return MemberRole.ADMIN
    if (claims.get("performer") or (profile and profile.has_role(MemberRole.PERFORMER))
            or settings.is_performer_email(email)):
        return MemberRole.PERFORMER
    return MemberRole.MEMBER


class SessionContext:
    """現在のメンバーとロールを保持"""

    def __init__(self, settings: Settings, profiles: Optional[ProfileRepository] = None):
        self.settings = settings
        self.profiles = profiles
        self._state = SessionState()
        self._claims: Dict[str, Any] = {}
        self._listeners: Dict[int, SessionListener] = {}
        self._next_id = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def role(self) -> Optional[MemberRole]:
        return self._state.role

    def subscribe(self, listener: SessionListener) -> Unsubscribe:
        """Register a listener; it is called once right away with the current state"""
        listener_id = self._next_id
        self._next_id += 1
        self._listeners[listener_id] = listener
        listener(self._state)

        def unsubscribe():
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def _publish(self, state: SessionState):
        self._state = state
        for listener in list(self._listeners.values()):
            listener(state)

    async def sign_in(self, uid: str, email: Optional[str] = None, claims: Optional[Dict[str, Any]] = None) -> SessionState:
        if not uid:
            raise ValueError("uid must not be empty")

        self._claims = dict(claims or {})
        profile = await self.profiles.get_by_id(uid) if self.profiles else None
        if profile is None:
            logger.info(f"プロフィール未作成のメンバー: {uid}")
        email = email or (profile.email if profile else None) or None

        state = SessionState(
            uid=uid,
            email=email,
            profile=profile,
            role=resolve_role(self.settings, email, profile, self._claims),
        )
        logger.info(f"サインイン: {uid} ({state.role.value})")
        self._publish(state)
        return state

    async def reload_profile(self) -> SessionState:
        """Re-read the profile after it was edited"""
        current = self.require_member()
        return await self.sign_in(current.uid, current.email, self._claims)

    def sign_out(self):
        if not self._state.signed_in:
            return
        logger.info(f"サインアウト: {self._state.uid}")
        self._claims = {}
        self._publish(SessionState())

    def require_member(self) -> SessionState:
        if not self._state.signed_in:
            raise NotSignedInError("Sign in required")
        return self._state

    def require_role(self, role: MemberRole) -> SessionState:
        """Admins satisfy every role, performers satisfy performer and member"""
        state = self.require_member()
        order = [MemberRole.MEMBER, MemberRole.PERFORMER, MemberRole.ADMIN]
        if order.index(state.role) < order.index(role):
            raise PermissionError(f"{role.value} role required")
        return state
