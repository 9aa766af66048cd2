"""CRUD operations for users, projects, tasks and attachments."""
import logging
import math
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import asc, desc, func, or_
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import (
    AlreadyMember,
    DuplicateEmail,
    HasAssignedTasks,
    HasDependentTasks,
    OwnerRemoval,
    OwnsProjects,
    SubtaskNotFound,
    UserNotFound,
    ValidationError,
)
from .identity import merge_preferences, normalize_email
from .task_dependencies import get_tasks_blocked_by, validate_dependencies

logger = logging.getLogger("taskboard-core.crud")

PROJECT_SORT_COLUMNS = {
    "createdAt": models.Project.created_at,
    "updatedAt": models.Project.updated_at,
    "name": models.Project.name,
    "priority": models.Project.priority,
    "status": models.Project.status,
    "endDate": models.Project.end_date,
}

TASK_SORT_COLUMNS = {
    "createdAt": models.Task.created_at,
    "updatedAt": models.Task.updated_at,
    "title": models.Task.title,
    "priority": models.Task.priority,
    "status": models.Task.status,
    "dueDate": models.Task.due_date,
    "position": models.Task.position,
}

USER_SORT_COLUMNS = {
    "createdAt": models.User.created_at,
    "firstName": models.User.first_name,
    "lastName": models.User.last_name,
    "email": models.User.email,
    "role": models.User.role,
    "lastLogin": models.User.last_login,
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


def _order_by(columns: dict, sort_by: str, sort_order: str):
    column = columns.get(sort_by)
    if column is None:
        raise ValidationError(f"Cannot sort by '{sort_by}'")
    return desc(column) if sort_order.upper() == "DESC" else asc(column)


def _ilike_any(search: str, *columns):
    pattern = f"%{search}%"
    return or_(*[column.ilike(pattern) for column in columns])


def _paginate(query, page: int, limit: int):
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, total


def pagination(total: int, page: int, limit: int) -> schemas.Pagination:
    return schemas.Pagination(total=total, page=page, limit=limit, pages=math.ceil(total / limit))


# ============================================================================
# User Operations
# ============================================================================

def get_user(db: Session, user_id: UUID) -> Optional[models.User]:
    """
    Get a user by ID.

    Args:
        db: Database session
        user_id: User UUID

    Returns:
        User instance or None if not found
    """
    return db.query(models.User).filter(models.User.id == user_id).first()


def list_users(
    db: Session,
    role: Optional[models.UserRole] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "DESC",
    page: int = 1,
    limit: int = 10,
) -> tuple[list[models.User], int]:
    """
    List users with filtering, sorting and pagination.

    Returns:
        Tuple of (users for the requested page, total matching count)
    """
    query = db.query(models.User)

    if role:
        query = query.filter(models.User.role == role)
    if is_active is not None:
        query = query.filter(models.User.is_active == is_active)
    if search:
        query = query.filter(
            _ilike_any(search, models.User.first_name, models.User.last_name, models.User.email)
        )

    query = query.order_by(_order_by(USER_SORT_COLUMNS, sort_by, sort_order))
    return _paginate(query, page, limit)


def search_users(
    db: Session,
    current_user_id: UUID,
    q: str,
    project_id: Optional[UUID] = None,
    limit: int = 10,
) -> list[models.User]:
    """
    Search active users by name or email, e.g. to pick new team members.

    Excludes the caller and, when project_id is given, the project's
    owner and current members.
    """
    query = db.query(models.User).filter(
        models.User.id != current_user_id,
        models.User.is_active.is_(True),
        _ilike_any(q, models.User.first_name, models.User.last_name, models.User.email),
    )

    if project_id:
        project = db.query(models.Project).filter(models.Project.id == project_id).first()
        if project:
            excluded = [member.user_id for member in project.members]
            excluded.append(project.owner_id)
            query = query.filter(models.User.id.notin_(excluded))

    return query.order_by(models.User.first_name, models.User.last_name).limit(limit).all()


def update_user(db: Session, user: models.User, data: schemas.UserAdminUpdate) -> models.User:
    """
    Update a user record.

    Callers are responsible for restricting role/is_active changes to admins.

    Raises:
        DuplicateEmail: If the new email belongs to another user
    """
    changes = data.model_dump(exclude_unset=True, exclude={"preferences"})

    if changes.get("email"):
        email = normalize_email(changes["email"])
        if email != user.email:
            existing = db.query(models.User).filter(models.User.email == email).first()
            if existing:
                raise DuplicateEmail("Email is already taken")
        changes["email"] = email

    for field, value in changes.items():
        if value is not None:
            setattr(user, field, value)

    if data.preferences is not None:
        user.preferences = merge_preferences(user.preferences, data.preferences)

    db.commit()
    db.refresh(user)
    logger.debug(f"Updated user {user.id}: {sorted(changes)}")
    return user


def delete_user(db: Session, user: models.User) -> None:
    """
    Delete a user.

    Raises:
        OwnsProjects: If the user still owns projects
        HasAssignedTasks: If tasks are still assigned to the user
    """
    owned = db.query(models.Project).filter(models.Project.owner_id == user.id).count()
    if owned > 0:
        raise OwnsProjects()

    assigned = db.query(models.Task).filter(models.Task.assigned_to_id == user.id).count()
    if assigned > 0:
        raise HasAssignedTasks()

    db.delete(user)
    db.commit()
    logger.debug(f"Deleted user {user.id}")


def get_user_stats(db: Session, user_id: UUID) -> schemas.UserStats:
    """Aggregate project and task counts for a user."""
    owned = db.query(models.Project).filter(models.Project.owner_id == user_id).count()
    member = db.query(models.ProjectMember).filter(models.ProjectMember.user_id == user_id).count()

    assigned = db.query(models.Task).filter(models.Task.assigned_to_id == user_id)
    total_tasks = assigned.count()
    completed_tasks = assigned.filter(models.Task.status == models.TaskStatus.COMPLETED).count()
    overdue_tasks = assigned.filter(
        models.Task.due_date < datetime.utcnow(),
        models.Task.status != models.TaskStatus.COMPLETED,
    ).count()

    return schemas.UserStats(
        owned_projects=owned,
        member_projects=member,
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        overdue_tasks=overdue_tasks,
        completion_rate=round_half_up(100 * completed_tasks / total_tasks) if total_tasks else 0,
    )


# ============================================================================
# Project Operations
# ============================================================================

def get_project(db: Session, project_id: UUID) -> Optional[models.Project]:
    """Get a project by ID."""
    return db.query(models.Project).filter(models.Project.id == project_id).first()


def list_projects_for_user(
    db: Session,
    user_id: UUID,
    status: Optional[models.ProjectStatus] = None,
    priority: Optional[models.Priority] = None,
    search: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "DESC",
) -> list[models.Project]:
    """
    List projects the user owns or is a member of.

    Args:
        db: Database session
        user_id: Requesting user
        status: Filter by project status
        priority: Filter by priority
        search: Case-insensitive match on name or description
        sort_by: One of PROJECT_SORT_COLUMNS
        sort_order: ASC or DESC

    Returns:
        List of projects
    """
    member_of = db.query(models.ProjectMember.project_id).filter(models.ProjectMember.user_id == user_id)
    query = db.query(models.Project).filter(
        or_(models.Project.owner_id == user_id, models.Project.id.in_(member_of))
    )

    if status:
        query = query.filter(models.Project.status == status)
    if priority:
        query = query.filter(models.Project.priority == priority)
    if search:
        query = query.filter(_ilike_any(search, models.Project.name, models.Project.description))

    return query.order_by(_order_by(PROJECT_SORT_COLUMNS, sort_by, sort_order)).all()


def create_project(db: Session, data: schemas.ProjectCreate, owner_id: UUID) -> models.Project:
    """
    Create a project owned by owner_id, optionally with an initial team.

    Team entries naming the owner are skipped; a repeated user keeps the
    last role given.

    Raises:
        UserNotFound: If a team entry names an unknown user
    """
    project = models.Project(
        name=data.name,
        description=data.description,
        start_date=data.start_date,
        end_date=data.end_date,
        priority=models.Priority(data.priority),
        budget=data.budget,
        owner_id=owner_id,
        settings=dict(models.DEFAULT_PROJECT_SETTINGS),
        metrics=dict(models.DEFAULT_PROJECT_METRICS),
    )

    roles: dict[UUID, str] = {}
    for member in data.team:
        if member.user_id == owner_id:
            continue
        if not get_user(db, member.user_id):
            raise UserNotFound(f"User {member.user_id} not found")
        roles[member.user_id] = member.role

    for user_id, role in roles.items():
        project.members.append(models.ProjectMember(user_id=user_id, role=models.ProjectRole(role)))

    db.add(project)
    db.flush()
    _refresh_project_metrics(db, project)
    db.commit()
    db.refresh(project)

    logger.debug(f"Created project {project.id} with {len(roles)} team members")
    return project


def update_project(db: Session, project: models.Project, data: schemas.ProjectUpdate) -> models.Project:
    """
    Apply a partial update to a project.

    Raises:
        ValidationError: If the resulting start/end dates are out of order
    """
    changes = data.model_dump(exclude_unset=True)
    for field in ("name", "status", "priority", "budget", "start_date", "end_date"):
        if field in changes and changes[field] is None:
            del changes[field]

    start = changes.get("start_date", project.start_date)
    end = changes.get("end_date", project.end_date)
    if start and end and start >= end:
        raise ValidationError("End date must be after start date")

    for field, value in changes.items():
        if field == "status":
            value = models.ProjectStatus(value)
        elif field == "priority":
            value = models.Priority(value)
        setattr(project, field, value)

    db.commit()
    db.refresh(project)
    logger.debug(f"Updated project {project.id}: {sorted(changes)}")
    return project


def delete_project(db: Session, project: models.Project) -> None:
    """
    Delete a project that has no tasks.

    Raises:
        HasDependentTasks: If any task still references the project
    """
    task_count = db.query(models.Task).filter(models.Task.project_id == project.id).count()
    if task_count > 0:
        raise HasDependentTasks()

    db.delete(project)
    db.commit()
    logger.debug(f"Deleted project {project.id}")


def add_project_member(
    db: Session,
    project: models.Project,
    user_id: UUID,
    role: models.ProjectRole = models.ProjectRole.MEMBER,
) -> models.ProjectMember:
    """
    Add a user to a project's team.

    Raises:
        UserNotFound: If the user does not exist
        AlreadyMember: If the user is the owner or already a member
    """
    if not get_user(db, user_id):
        raise UserNotFound()

    if project.owner_id == user_id or any(m.user_id == user_id for m in project.members):
        raise AlreadyMember()

    membership = models.ProjectMember(project_id=project.id, user_id=user_id, role=models.ProjectRole(role))
    db.add(membership)
    db.flush()
    db.refresh(project)
    _refresh_project_metrics(db, project)
    db.commit()
    db.refresh(project)

    logger.debug(f"Added user {user_id} to project {project.id} as {models.ProjectRole(role).value}")
    return membership


def remove_project_member(db: Session, project: models.Project, user_id: UUID) -> None:
    """
    Remove a user from a project's team. Removing a non-member is a no-op.

    Raises:
        OwnerRemoval: If user_id is the project owner
    """
    if project.owner_id == user_id:
        raise OwnerRemoval()

    removed = (
        db.query(models.ProjectMember)
        .filter(
            models.ProjectMember.project_id == project.id,
            models.ProjectMember.user_id == user_id,
        )
        .delete(synchronize_session=False)
    )
    db.flush()
    db.refresh(project)
    _refresh_project_metrics(db, project)
    db.commit()
    db.refresh(project)

    logger.debug(f"Removed user {user_id} from project {project.id} ({removed} rows)")


def _refresh_project_metrics(db: Session, project: models.Project) -> None:
    """Recompute progress and metrics from the project's tasks. Does not commit."""
    total = db.query(models.Task).filter(models.Task.project_id == project.id).count()
    completed = (
        db.query(models.Task)
        .filter(
            models.Task.project_id == project.id,
            models.Task.status == models.TaskStatus.COMPLETED,
        )
        .count()
    )
    total_hours = (
        db.query(func.coalesce(func.sum(models.Task.actual_hours), 0))
        .filter(models.Task.project_id == project.id)
        .scalar()
    )
    team_size = (
        db.query(models.ProjectMember).filter(models.ProjectMember.project_id == project.id).count()
    )

    project.progress = round_half_up(100 * completed / total) if total else 0
    project.metrics = {
        **(project.metrics or {}),
        "totalTasks": total,
        "completedTasks": completed,
        "totalHours": float(total_hours or 0),
        "teamSize": team_size + 1,
    }


def update_project_progress(db: Session, project_id: UUID) -> Optional[models.Project]:
    """
    Recompute a project's progress as round(100 * completed / total).

    Progress is 0 for a project without tasks. Metrics are refreshed at
    the same time.

    Returns:
        The updated project, or None if it does not exist
    """
    project = get_project(db, project_id)
    if not project:
        return None

    _refresh_project_metrics(db, project)
    db.commit()
    db.refresh(project)
    logger.debug(f"Project {project.id} progress is now {project.progress}%")
    return project


def get_project_analytics(db: Session, project: models.Project) -> schemas.ProjectAnalytics:
    """Task breakdowns, overdue count and recent activity for a project."""
    by_status = dict(
        db.query(models.Task.status, func.count(models.Task.id))
        .filter(models.Task.project_id == project.id)
        .group_by(models.Task.status)
        .all()
    )
    by_priority = dict(
        db.query(models.Task.priority, func.count(models.Task.id))
        .filter(models.Task.project_id == project.id)
        .group_by(models.Task.priority)
        .all()
    )
    overdue = (
        db.query(models.Task)
        .filter(
            models.Task.project_id == project.id,
            models.Task.due_date < datetime.utcnow(),
            models.Task.status != models.TaskStatus.COMPLETED,
        )
        .count()
    )
    recent = (
        db.query(models.Task)
        .filter(models.Task.project_id == project.id)
        .order_by(models.Task.updated_at.desc())
        .limit(5)
        .all()
    )

    return schemas.ProjectAnalytics(
        tasks_by_status={s.value: by_status.get(s, 0) for s in models.TaskStatus},
        tasks_by_priority={p.value: by_priority.get(p, 0) for p in models.Priority},
        overdue_tasks=overdue,
        recent_tasks=[schemas.TaskResponse.model_validate(task) for task in recent],
        project_progress=project.progress,
    )


# ============================================================================
# Task Operations
# ============================================================================

def get_task(db: Session, task_id: UUID) -> Optional[models.Task]:
    """Get a task by ID."""
    return db.query(models.Task).filter(models.Task.id == task_id).first()


def list_tasks_for_user(
    db: Session,
    user_id: UUID,
    project_id: Optional[UUID] = None,
    status: Optional[models.TaskStatus] = None,
    priority: Optional[models.Priority] = None,
    assigned_to: Optional[UUID] = None,
    search: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "DESC",
    page: int = 1,
    limit: int = 10,
) -> tuple[list[models.Task], int]:
    """
    List tasks created by or assigned to the user.

    Returns:
        Tuple of (tasks for the requested page, total matching count)
    """
    query = db.query(models.Task).filter(
        or_(models.Task.created_by_id == user_id, models.Task.assigned_to_id == user_id)
    )

    if project_id:
        query = query.filter(models.Task.project_id == project_id)
    if status:
        query = query.filter(models.Task.status == status)
    if priority:
        query = query.filter(models.Task.priority == priority)
    if assigned_to:
        query = query.filter(models.Task.assigned_to_id == assigned_to)
    if search:
        query = query.filter(_ilike_any(search, models.Task.title, models.Task.description))

    query = query.order_by(_order_by(TASK_SORT_COLUMNS, sort_by, sort_order))
    return _paginate(query, page, limit)


def _validate_assignee(db: Session, project: models.Project, assignee_id: UUID) -> None:
    """
    Raises:
        UserNotFound: If the assignee does not exist
        ValidationError: If the assignee is neither owner nor member of the project
    """
    if not get_user(db, assignee_id):
        raise UserNotFound("Assigned user not found")
    if project.owner_id != assignee_id and not any(m.user_id == assignee_id for m in project.members):
        raise ValidationError("Assigned user is not a member of this project")


def add_activity(
    db: Session,
    task: models.Task,
    user_id: Optional[UUID],
    action: str,
    details: Optional[dict] = None,
) -> models.TaskActivity:
    """Append an audit entry to a task's activity log. Does not commit."""
    entry = models.TaskActivity(user_id=user_id, action=action, details=details or {})
    task.activity.append(entry)
    return entry


def create_task(db: Session, data: schemas.TaskCreate, project: models.Project, user_id: UUID) -> models.Task:
    """
    Create a task in a project. Callers check project access first.

    Args:
        db: Database session
        data: Task creation data
        project: Project the task belongs to
        user_id: Creator

    Returns:
        Created task

    Raises:
        UserNotFound, ValidationError: Invalid assignee or dependencies
    """
    if data.assigned_to_id:
        _validate_assignee(db, project, data.assigned_to_id)

    dependencies = validate_dependencies(db, None, data.dependencies, project.id)

    task = models.Task(
        title=data.title,
        description=data.description,
        project_id=project.id,
        assigned_to_id=data.assigned_to_id,
        created_by_id=user_id,
        priority=models.Priority(data.priority),
        due_date=data.due_date,
        estimated_hours=data.estimated_hours,
        labels=list(data.labels),
        position=data.position,
    )
    task.dependencies = dependencies
    add_activity(db, task, user_id, "created", {"title": data.title})

    db.add(task)
    db.flush()
    _refresh_project_metrics(db, project)
    db.commit()
    db.refresh(task)

    logger.debug(f"Created task {task.id} in project {project.id}")
    return task


def update_task(db: Session, task: models.Task, data: schemas.TaskUpdate, user_id: UUID) -> models.Task:
    """
    Apply a partial update to a task.

    Progress of the owning project is recomputed when the status moves
    into or out of ``completed`` or when logged hours change.

    Raises:
        UserNotFound, ValidationError: Invalid assignee or dependencies
    """
    changes = data.model_dump(exclude_unset=True, exclude={"dependencies"})
    for field in ("title", "status", "priority", "estimated_hours", "actual_hours", "labels", "position"):
        if field in changes and changes[field] is None:
            del changes[field]

    new_assignee = changes.get("assigned_to_id")
    if new_assignee and new_assignee != task.assigned_to_id:
        _validate_assignee(db, task.project, new_assignee)

    if data.dependencies is not None:
        task.dependencies = validate_dependencies(db, task.id, data.dependencies, task.project_id)
        changes["dependencies"] = [str(dep_id) for dep_id in task.dependency_ids]

    old_status = models.TaskStatus(task.status)
    for field, value in changes.items():
        if field == "dependencies":
            continue
        if field == "status":
            value = models.TaskStatus(value)
        elif field == "priority":
            value = models.Priority(value)
        setattr(task, field, value)

    new_status = models.TaskStatus(task.status)
    if new_status != old_status:
        add_activity(db, task, user_id, "status_changed", {"from": old_status.value, "to": new_status.value})
    if changes:
        add_activity(db, task, user_id, "updated", {"fields": sorted(changes)})

    crosses_completed = (old_status == models.TaskStatus.COMPLETED) != (new_status == models.TaskStatus.COMPLETED)
    db.flush()
    if crosses_completed or "actual_hours" in changes:
        _refresh_project_metrics(db, task.project)
    db.commit()
    db.refresh(task)

    logger.debug(f"Updated task {task.id}: {sorted(changes)}")
    return task


def delete_task(db: Session, task: models.Task) -> None:
    """Delete a task with its comments, time entries, subtasks and activity."""
    project = task.project
    blocked = get_tasks_blocked_by(db, task.id)
    if blocked:
        logger.info(f"Deleting task {task.id} removes it as a dependency of {len(blocked)} task(s)")

    db.delete(task)
    db.flush()
    _refresh_project_metrics(db, project)
    db.commit()
    logger.debug(f"Deleted task {task.id}")


def add_comment(db: Session, task: models.Task, user_id: UUID, content: str) -> models.TaskComment:
    """Append a comment to a task."""
    comment = models.TaskComment(id=uuid4(), user_id=user_id, content=content)
    task.comments.append(comment)
    add_activity(db, task, user_id, "commented", {"commentId": str(comment.id)})
    db.commit()
    db.refresh(comment)
    return comment


def add_time_entry(
    db: Session,
    task: models.Task,
    user_id: UUID,
    start_time: datetime,
    end_time: datetime,
    description: str = "",
) -> models.TaskTimeEntry:
    """
    Append a time entry; duration is derived in hours.

    Raises:
        ValidationError: If end_time is not after start_time
    """
    if start_time >= end_time:
        raise ValidationError("End time must be after start time")

    duration = (end_time - start_time).total_seconds() / 3600
    entry = models.TaskTimeEntry(
        user_id=user_id,
        start_time=start_time,
        end_time=end_time,
        duration=duration,
        description=description,
    )
    task.time_entries.append(entry)
    add_activity(db, task, user_id, "time_logged", {"duration": duration})
    db.commit()
    db.refresh(entry)
    return entry


def add_subtask(db: Session, task: models.Task, user_id: UUID, title: str, description: str = "") -> models.Subtask:
    """Append a subtask to a task."""
    subtask = models.Subtask(title=title, description=description, completed=False)
    task.subtasks.append(subtask)
    add_activity(db, task, user_id, "subtask_added", {"title": title})
    db.commit()
    db.refresh(subtask)
    return subtask


def update_subtask(
    db: Session,
    task: models.Task,
    subtask_id: UUID,
    user_id: UUID,
    data: schemas.SubtaskUpdate,
) -> models.Subtask:
    """
    Patch a subtask by id.

    Raises:
        SubtaskNotFound: If the task has no subtask with that id
    """
    subtask = next((s for s in task.subtasks if s.id == subtask_id), None)
    if subtask is None:
        raise SubtaskNotFound()

    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    for field, value in changes.items():
        setattr(subtask, field, value)

    add_activity(db, task, user_id, "subtask_updated", {"subtaskId": str(subtask.id), "fields": sorted(changes)})
    db.commit()
    db.refresh(subtask)
    return subtask


# ============================================================================
# Attachment Operations
# ============================================================================

def create_attachments(
    db: Session,
    stored_files: list[dict],
    uploaded_by_id: UUID,
    task: Optional[models.Task] = None,
    project: Optional[models.Project] = None,
) -> list[models.Attachment]:
    """
    Record stored files as attachments of a task or a project.

    Args:
        stored_files: Dicts with filename, original_name, path, size, mime_type
    """
    attachments = [
        models.Attachment(
            uploaded_by_id=uploaded_by_id,
            task_id=task.id if task else None,
            project_id=project.id if project else None,
            **stored,
        )
        for stored in stored_files
    ]
    db.add_all(attachments)
    if task is not None:
        add_activity(db, task, uploaded_by_id, "file_uploaded", {"files": [a.original_name for a in attachments]})
    db.commit()
    for attachment in attachments:
        db.refresh(attachment)
    return attachments


def get_attachment_by_filename(db: Session, filename: str) -> Optional[models.Attachment]:
    return db.query(models.Attachment).filter(models.Attachment.filename == filename).first()


def delete_attachment(db: Session, attachment: models.Attachment, user_id: UUID) -> None:
    if attachment.task is not None:
        add_activity(db, attachment.task, user_id, "file_deleted", {"file": attachment.original_name})
    db.delete(attachment)
    db.commit()
