"""
Workspace accounts: registration, owner/staff login and credential changes.

Each workspace has three credentials (owner email, admin username,
kitchen username), each stored as a werkzeug password hash. Username comparison is
trimmed and case-insensitive; email comparison is lower-cased.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from app.core.config import get_settings
from app.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationFailedError,
)
from app.models import Workspace
from app.services.auth.sessions import Role, SessionContext, issue_session

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MIN_USERNAME_LENGTH = 3


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_username(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def hash_secret(secret: str) -> str:
    return generate_password_hash(secret)


def verify_secret(secret: str, stored_hash: str) -> bool:
    return check_password_hash(stored_hash, secret)


@dataclass
class WorkspaceRegistration:
    restaurant_name: str
    outlet_name: str
    owner_email: str
    owner_password: str
    admin_username: str
    admin_password: str
    kitchen_username: str
    kitchen_password: str


@dataclass
class AuthResult:
    """A signed-in session plus the workspace it belongs to."""
    token: str
    session: SessionContext
    workspace: Workspace


def _validate_registration(data: WorkspaceRegistration) -> WorkspaceRegistration:
    cleaned = WorkspaceRegistration(
        restaurant_name=str(data.restaurant_name or "").strip(),
        outlet_name=str(data.outlet_name or "").strip(),
        owner_email=normalize_email(data.owner_email),
        owner_password=str(data.owner_password or "").strip(),
        admin_username=str(data.admin_username or "").strip(),
        admin_password=str(data.admin_password or "").strip(),
        kitchen_username=str(data.kitchen_username or "").strip(),
        kitchen_password=str(data.kitchen_password or "").strip(),
    )

    if not cleaned.restaurant_name:
        raise ValidationFailedError("Restaurant name is required")
    if not cleaned.outlet_name:
        raise ValidationFailedError("Outlet name is required")
    if not cleaned.owner_email or "@" not in cleaned.owner_email:
        raise ValidationFailedError("Valid owner email is required")
    if len(cleaned.owner_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError("Owner password must be at least 6 characters")
    if len(cleaned.admin_username) < MIN_USERNAME_LENGTH:
        raise ValidationFailedError("Admin username must be at least 3 characters")
    if len(cleaned.admin_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError("Admin password must be at least 6 characters")
    if len(cleaned.kitchen_username) < MIN_USERNAME_LENGTH:
        raise ValidationFailedError("Kitchen username must be at least 3 characters")
    if len(cleaned.kitchen_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError("Kitchen password must be at least 6 characters")
    return cleaned


async def get_workspace(db: AsyncSession, workspace_id: str) -> Workspace:
    workspace = await db.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found")
    return workspace


async def register_workspace(db: AsyncSession, data: WorkspaceRegistration) -> AuthResult:
    """Create a workspace and sign its owner in."""
    cleaned = _validate_registration(data)

    existing = await db.execute(
        select(Workspace.id).where(Workspace.owner_email == cleaned.owner_email)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("An account already exists with this owner email")

    settings = get_settings()
    workspace = Workspace(
        restaurant_name=cleaned.restaurant_name,
        outlet_name=cleaned.outlet_name,
        owner_email=cleaned.owner_email,
        admin_username=cleaned.admin_username,
        kitchen_username=cleaned.kitchen_username,
        owner_password_hash=hash_secret(cleaned.owner_password),
        admin_password_hash=hash_secret(cleaned.admin_password),
        kitchen_password_hash=hash_secret(cleaned.kitchen_password),
        currency_code=settings.currency_code,
        timezone=settings.timezone,
    )
    db.add(workspace)
    await db.commit()
    await db.refresh(workspace)

    logger.info(f"Workspace {workspace.id} registered for {workspace.restaurant_name}")

    token, session = issue_session(workspace.id, Role.OWNER, workspace.owner_email)
    return AuthResult(token=token, session=session, workspace=workspace)


async def login_workspace(db: AsyncSession, owner_email: str, password: str) -> AuthResult:
    """Owner login by email and password."""
    email = normalize_email(owner_email)
    result = await db.execute(select(Workspace).where(Workspace.owner_email == email))
    workspace = result.scalar_one_or_none()
    if workspace is None:
        raise AuthenticationError("Workspace account not found")

    if not verify_secret(str(password or "").strip(), workspace.owner_password_hash):
        raise AuthenticationError("Invalid email or password")

    token, session = issue_session(workspace.id, Role.OWNER, workspace.owner_email)
    return AuthResult(token=token, session=session, workspace=workspace)


async def login_staff(
    db: AsyncSession,
    workspace_id: str,
    role: Role,
    username: str,
    password: str,
) -> AuthResult:
    """Admin or kitchen login inside a workspace."""
    if role not in (Role.ADMIN, Role.KITCHEN):
        raise ValidationFailedError("Staff login is only for admin or kitchen users")

    workspace = await get_workspace(db, workspace_id)
    label = role.value.capitalize()
    failure = f"Invalid {role.value} username or password"

    entered = normalize_username(username)
    if not entered:
        raise ValidationFailedError(f"{label} username is required")

    if role == Role.ADMIN:
        expected, stored = workspace.admin_username, workspace.admin_password_hash
    else:
        expected, stored = workspace.kitchen_username, workspace.kitchen_password_hash

    if entered != normalize_username(expected):
        raise AuthenticationError(failure)
    if not verify_secret(str(password or "").strip(), stored):
        raise AuthenticationError(failure)

    token, session = issue_session(workspace.id, role, expected)
    return AuthResult(token=token, session=session, workspace=workspace)


async def login_admin(db: AsyncSession, workspace_id: str, username: str, password: str) -> AuthResult:
    return await login_staff(db, workspace_id, Role.ADMIN, username, password)


async def login_kitchen(db: AsyncSession, workspace_id: str, username: str, password: str) -> AuthResult:
    return await login_staff(db, workspace_id, Role.KITCHEN, username, password)


async def update_kitchen_credentials(
    db: AsyncSession,
    session: SessionContext,
    current_username: str,
    current_password: str,
    next_username: Optional[str] = None,
    next_password: Optional[str] = None,
) -> Workspace:
    """Change the kitchen username and/or password after re-checking the current ones."""
    workspace = await get_workspace(db, session.workspace_id)

    if normalize_username(current_username) != normalize_username(workspace.kitchen_username):
        raise AuthenticationError("Invalid current username or password")
    if not verify_secret(str(current_password or "").strip(), workspace.kitchen_password_hash):
        raise AuthenticationError("Invalid current username or password")

    if next_username:
        username = next_username.strip()
        if len(username) < MIN_USERNAME_LENGTH:
            raise ValidationFailedError("New username must be at least 3 characters")
        workspace.kitchen_username = username

    if next_password:
        password = next_password.strip()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailedError("New password must be at least 6 characters")
        workspace.kitchen_password_hash = hash_secret(password)

    await db.commit()
    await db.refresh(workspace)

    logger.info(f"Kitchen credentials updated for workspace {workspace.id}")
    return workspace


async def update_workspace_settings(
    db: AsyncSession,
    session: SessionContext,
    updates: dict,
) -> Workspace:
    """Apply identity/currency/timezone/logo changes from an admin session."""
    workspace = await get_workspace(db, session.workspace_id)

    for field in ("restaurant_name", "outlet_name", "timezone", "logo_url"):
        if field in updates and updates[field] is not None:
            setattr(workspace, field, str(updates[field]).strip() or None)
    if updates.get("currency_code"):
        workspace.currency_code = str(updates["currency_code"]).strip().upper()

    if not workspace.restaurant_name:
        raise ValidationFailedError("Restaurant name is required")
    if not workspace.outlet_name:
        raise ValidationFailedError("Outlet name is required")
    if not workspace.timezone:
        workspace.timezone = "UTC"

    await db.commit()
    await db.refresh(workspace)
    return workspace
