"""
Runtime configuration loaded from environment variables
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field

from .integrations.firestore_client import FirestoreConfig


def _split_emails(raw: Optional[str]) -> List[str]:
    """Parse a comma separated email list (lowercased, blanks dropped)"""
    if not raw:
        return []
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    """Application settings"""
    firestore: FirestoreConfig
    proxy_target_url: Optional[str] = None
    super_admin_emails: List[str] = Field(default_factory=list)
    admin_emails: List[str] = Field(default_factory=list)
    performer_emails: List[str] = Field(default_factory=list)
    encryption_key: Optional[str] = None
    log_level: str = "INFO"

    def is_admin_email(self, email: Optional[str]) -> bool:
        if not email:
            return False
        return email.lower() in self.admin_emails

    def is_performer_email(self, email: Optional[str]) -> bool:
        """Admins are always performers too"""
        if not email:
            return False
        return self.is_admin_email(email) or email.lower() in self.performer_emails


def load_settings() -> Settings:
    """Build Settings from the process environment"""
    firestore_config = FirestoreConfig(
        project_id=os.getenv("GCP_PROJECT_ID", "demo-ensemble"),
        database_id=os.getenv("FIRESTORE_DATABASE_ID", "(default)"),
        credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
        emulator_host=os.getenv("FIRESTORE_EMULATOR_HOST"),
    )

    return Settings(
        firestore=firestore_config,
        proxy_target_url=os.getenv("PROXY_TARGET_URL") or None,
        super_admin_emails=_split_emails(os.getenv("SUPER_ADMIN_EMAILS")),
        admin_emails=_split_emails(os.getenv("ADMIN_EMAILS")),
        performer_emails=_split_emails(os.getenv("PERFORMER_EMAILS")),
        encryption_key=os.getenv("ENCRYPTION_KEY") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
