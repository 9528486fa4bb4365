"""
Workspace Sessions

A session is an explicit SessionContext object: which workspace, which
role, which user. It travels as a signed JWT (``tenant_id``, ``role``,
``sub`` claims) and is decoded once per request, then handed to every
service call. Nothing about the current workspace lives in globals.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from app.core.config import get_settings
from app.core.errors import AuthenticationError, PermissionDeniedError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    KITCHEN = "kitchen"


ADMIN_ROLES = frozenset({Role.OWNER, Role.ADMIN})
KITCHEN_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.KITCHEN})


@dataclass(frozen=True)
class SessionContext:
    """The authenticated caller of a request."""
    workspace_id: str
    role: Role
    username: str
    issued_at: datetime
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def require(self, roles: frozenset) -> "SessionContext":
        if self.role not in roles:
            raise PermissionDeniedError(
                f"{self.role.value.capitalize()} sessions cannot perform this action"
            )
        return self


def issue_session(workspace_id: str, role: Role, username: str) -> tuple[str, SessionContext]:
    """
    Create a signed session token.

    Returns:
        (token, context) - the token for the client, the context for the caller
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expires = now + timedelta(minutes=settings.session_ttl_minutes)

    payload = {
        "tenant_id": workspace_id,
        "role": role.value,
        "sub": username,
        "iat": int(now.timestamp()),
        "exp": int(expires.timestamp()),
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    logger.info(f"Issued {role.value} session for workspace {workspace_id}")

    context = SessionContext(
        workspace_id=workspace_id,
        role=role,
        username=username,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
    return token, context


def decode_session(token: Optional[str]) -> SessionContext:
    """
    Validate a session token and turn it into a SessionContext.

    Raises:
        AuthenticationError: missing, expired, tampered or malformed token
    """
    if not token:
        raise AuthenticationError("Please sign in to continue")

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "iat", "tenant_id", "role", "sub"]},
        )
    except ExpiredSignatureError:
        raise AuthenticationError("Your session has expired. Please sign in again")
    except InvalidTokenError as e:
        logger.warning(f"Rejected session token: {e}")
        raise AuthenticationError("Invalid session")

    try:
        role = Role(payload["role"])
    except ValueError:
        raise AuthenticationError("Invalid session")

    return SessionContext(
        workspace_id=str(payload["tenant_id"]),
        role=role,
        username=str(payload["sub"]),
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
