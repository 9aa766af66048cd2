"""FastAPI dependencies for authentication and access control."""
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .. import identity, models, permissions
from ..config import get_settings
from ..database import get_db
from ..errors import Unauthenticated
from ..storage import LocalFileStorage

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[models.User]:
    """Resolve the Bearer token if one is present; no token yields None."""
    if credentials is None:
        return None
    return identity.get_active_user(db, credentials.credentials)


def get_current_user(
    current_user: Optional[models.User] = Depends(get_current_user_optional),
) -> models.User:
    """Require an authenticated, active user."""
    if current_user is None:
        raise Unauthenticated("Not authorized, no token")
    return current_user


def require_roles(*roles: models.UserRole):
    """Dependency factory restricting a route to the given global roles."""

    def dependency(current_user: Optional[models.User] = Depends(get_current_user)) -> models.User:
        return permissions.require_role(current_user, roles)

    return dependency


def project_access(
    project_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> permissions.ProjectAccess:
    return permissions.check_project_access(db, current_user.id, project_id)


def project_edit_access(
    project_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> permissions.ProjectAccess:
    return permissions.check_project_edit_access(db, current_user.id, project_id)


def task_access(
    task_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> permissions.TaskAccess:
    return permissions.check_task_access(db, current_user.id, task_id)


def get_storage() -> LocalFileStorage:
    settings = get_settings()
    return LocalFileStorage(settings.upload_dir, settings.max_file_size)
