"""
Serverless functions (role claim sync, HTTP proxy)
"""

from .role_sync import RoleClaimsService, sync_admin_claim, claims_for_role

__all__ = [
    "RoleClaimsService",
    "sync_admin_claim",
    "claims_for_role"
]
