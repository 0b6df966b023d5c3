"""
Custom claim management (Firebase Admin SDK)

- ``sync_admin_claim``: body of the ``users/{uid}`` update trigger; mirrors
  the document's ``role`` field into the boolean ``admin`` claim.
- ``RoleClaimsService.assign_role``: super-admin-only role assignment by
  email, with an audit record in ``role_audit``.
"""

import logging
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from ..config import Settings
from ..integrations.firestore_client import DocumentReference, FirestoreClient
from ..models.event import utcnow
from ..models.profile import MemberRole
from ..models.repository import EncryptionManager, ProfileRepository

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = ("admin", "performer", "none")


class RolePermissionError(PermissionError):
    """Caller is not allowed to change roles"""
    pass


class RoleArgumentError(ValueError):
    """Missing or unsupported role assignment input"""
    pass


def _default_auth(credentials_path: Optional[str] = None):
    """firebase_admin.auth, initializing the default app on first use"""
    import firebase_admin
    from firebase_admin import auth, credentials

    try:
        firebase_admin.get_app()
    except ValueError:
        cred = credentials.Certificate(credentials_path) if credentials_path else None
        firebase_admin.initialize_app(cred)
        logger.info("Firebase Admin SDK 初期化")
    return auth


def claims_for_role(role: str) -> Dict[str, Any]:
    """Custom claims for an assignable role; ``none`` clears them"""
    if role == MemberRole.ADMIN.value:
        return {"admin": True, "role": "admin"}
    if role == MemberRole.PERFORMER.value:
        return {"performer": True, "role": "performer"}
    return {}


def sync_admin_claim(uid: str, after: Optional[Mapping[str, Any]], auth_backend=None) -> Optional[Dict[str, Any]]:
    """
    Set the ``admin`` claim from an updated users/{uid} document.

    Args:
        uid: updated document id
        after: document data after the update; None when the snapshot is
            unavailable, in which case nothing is changed

    Returns:
        The claims written, or None for a no-op
    """
    if after is None:
        logger.info(f"ユーザードキュメントなし、クレーム同期スキップ: {uid}")
        return None

    claims = {"admin": after.get("role") == MemberRole.ADMIN.value}
    auth = auth_backend or _default_auth()
    auth.set_custom_user_claims(uid, claims)
    logger.info(f"adminクレーム同期: {uid} -> {claims['admin']}")
    return claims


class RoleClaimsService:
    """ロール付与（スーパー管理者のみ）"""

    def __init__(self, settings: Settings, client: FirestoreClient, auth_backend=None):
        self.settings = settings
        self.client = client
        self.profiles = ProfileRepository(client, EncryptionManager(settings.encryption_key))
        self._auth = auth_backend

    @property
    def auth(self):
        if self._auth is None:
            self._auth = _default_auth(self.settings.firestore.credentials_path)
        return self._auth

    def is_super_admin(self, email: Optional[str]) -> bool:
        return bool(email) and email.lower() in self.settings.super_admin_emails

    async def assign_role(self, caller_email: Optional[str], email: str, role: str) -> Dict[str, Any]:
        """
        Grant ``admin``/``performer`` or clear roles (``none``) for a member.

        Raises:
            RolePermissionError: caller is not a super admin
            RoleArgumentError: email or role missing, or role not assignable
        """
        if not caller_email:
            raise RolePermissionError("Sign in first.")
        if not self.is_super_admin(caller_email):
            logger.warning(f"ロール変更拒否: {caller_email}")
            raise RolePermissionError("Not allowed.")
        if not email or not role:
            raise RoleArgumentError("email and role are required")
        if role not in ASSIGNABLE_ROLES:
            raise RoleArgumentError(f"Unsupported role: {role}")

        user = self.auth.get_user_by_email(email)
        claims = claims_for_role(role)
        self.auth.set_custom_user_claims(user.uid, claims)

        await self.profiles.update_user_roles(user.uid, [role] if role != "none" else [])
        await self.client.set_document(
            DocumentReference(collection="role_audit", document_id=uuid4().hex),
            {
                "targetUid": user.uid,
                "targetEmail": user.email,
                "role": role,
                "by": caller_email,
                "at": utcnow(),
            }
        )

        logger.info(f"ロール付与: {user.email} -> {role} (by {caller_email})")
        return {"ok": True, "uid": user.uid, "email": user.email, "claims": claims}
