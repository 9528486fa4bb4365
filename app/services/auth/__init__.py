"""
Authentication and workspace sessions.
"""

from app.services.auth.sessions import (
    ADMIN_ROLES,
    KITCHEN_ROLES,
    Role,
    SessionContext,
    decode_session,
    issue_session,
)
from app.services.auth.workspaces import (
    AuthResult,
    WorkspaceRegistration,
    get_workspace,
    login_admin,
    login_kitchen,
    login_staff,
    login_workspace,
    register_workspace,
    update_kitchen_credentials,
    update_workspace_settings,
)

__all__ = [
    "ADMIN_ROLES",
    "KITCHEN_ROLES",
    "Role",
    "SessionContext",
    "decode_session",
    "issue_session",
    "AuthResult",
    "WorkspaceRegistration",
    "get_workspace",
    "login_admin",
    "login_kitchen",
    "login_staff",
    "login_workspace",
    "register_workspace",
    "update_kitchen_credentials",
    "update_workspace_settings",
]
