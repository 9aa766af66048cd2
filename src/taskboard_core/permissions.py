"""Project and task access checks.

Authorization is recomputed from the current relational state on every
call: ownership of the project, a ProjectMember row, and for tasks the
creator/assignee relation.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .errors import AccessDenied, Forbidden, ProjectNotFound, TaskNotFound, Unauthenticated

logger = logging.getLogger("taskboard-core.permissions")

EDIT_ROLES = frozenset({models.ProjectRole.OWNER.value, models.ProjectRole.MANAGER.value})


@dataclass
class ProjectAccess:
    """Result of a successful project access check."""

    project: models.Project
    role: str

    @property
    def can_edit(self) -> bool:
        return self.role in EDIT_ROLES


@dataclass
class TaskAccess:
    """Result of a successful task access check."""

    task: models.Task
    project_access: ProjectAccess
    can_edit: bool


def get_membership(db: Session, project_id: UUID, user_id: UUID) -> Optional[models.ProjectMember]:
    return (
        db.query(models.ProjectMember)
        .filter(
            models.ProjectMember.project_id == project_id,
            models.ProjectMember.user_id == user_id,
        )
        .first()
    )


def resolve_project_role(db: Session, project: models.Project, user_id: UUID) -> Optional[str]:
    """
    Resolve a user's effective role on a project.

    Returns:
        "owner" for the owner; for members "member", or the stored
        membership role when honor_member_roles is enabled; None otherwise
    """
    if project.owner_id == user_id:
        return models.ProjectRole.OWNER.value

    membership = get_membership(db, project.id, user_id)
    if membership is None:
        return None
    if get_settings().honor_member_roles:
        return models.ProjectRole(membership.role).value
    return models.ProjectRole.MEMBER.value


def check_project_access(db: Session, user_id: UUID, project_id: UUID) -> ProjectAccess:
    """
    Require that the user owns or is a member of the project.

    Raises:
        ProjectNotFound: If the project does not exist
        AccessDenied: If the user is neither owner nor member
    """
    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if not project:
        raise ProjectNotFound()

    role = resolve_project_role(db, project, user_id)
    if role is None:
        logger.warning(f"User {user_id} denied access to project {project_id}")
        raise AccessDenied("Access denied. You are not a member of this project")

    return ProjectAccess(project=project, role=role)


def check_project_edit_access(db: Session, user_id: UUID, project_id: UUID) -> ProjectAccess:
    """
    Require project access with an owner or manager role.

    Raises:
        ProjectNotFound, AccessDenied
    """
    access = check_project_access(db, user_id, project_id)
    if not access.can_edit:
        logger.warning(f"User {user_id} denied edit access to project {project_id} (role: {access.role})")
        raise AccessDenied("You need owner or manager permissions to perform this action")
    return access


def check_task_access(db: Session, user_id: UUID, task_id: UUID) -> TaskAccess:
    """
    Require access to a task: creator, assignee, or project editor.

    Project access is checked first, so a non-member is refused even when
    they created or were assigned the task.

    Raises:
        TaskNotFound, ProjectNotFound, AccessDenied
    """
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if not task:
        raise TaskNotFound()

    project_access = check_project_access(db, user_id, task.project_id)

    is_creator = task.created_by_id == user_id
    is_assignee = task.assigned_to_id == user_id
    can_edit = is_creator or is_assignee or project_access.can_edit
    if not can_edit:
        logger.warning(f"User {user_id} denied access to task {task_id}")
        raise AccessDenied("Access denied. You are not authorized to access this task")

    return TaskAccess(task=task, project_access=project_access, can_edit=can_edit)


def require_role(user: Optional[models.User], allowed: Iterable[models.UserRole]) -> models.User:
    """
    Require an authenticated user whose global role is in allowed.

    Raises:
        Unauthenticated: If no user is attached
        Forbidden: If the user's role is not allowed
    """
    if user is None:
        raise Unauthenticated()

    role = models.UserRole(user.role)
    if role not in [models.UserRole(r) for r in allowed]:
        logger.warning(f"User {user.id} with role {role.value} refused")
        raise Forbidden(f"User role {role.value} is not authorized to access this route")
    return user
