"""Tasks API endpoints."""
import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskboard_core import crud, models, permissions, schemas

from ...database import get_db
from ..dependencies import get_current_user, task_access

logger = logging.getLogger("taskboard-core.tasks")

router = APIRouter(tags=["tasks"])

TaskSortField = Literal["createdAt", "updatedAt", "title", "priority", "status", "dueDate", "position"]
SortOrder = Literal["ASC", "DESC", "asc", "desc"]


def _task_data(task: models.Task) -> dict:
    return {"task": schemas.TaskDetailResponse.model_validate(task)}


@router.get("", response_model=schemas.ApiResponse[schemas.TaskListData])
def list_tasks(
    project_id: Optional[UUID] = Query(None, alias="projectId", description="Filter by project"),
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.Priority] = Query(None, description="Filter by priority"),
    assigned_to: Optional[UUID] = Query(None, alias="assignedTo", description="Filter by assignee"),
    search: Optional[str] = Query(None, description="Search in title and description"),
    sort_by: TaskSortField = Query("createdAt", alias="sortBy"),
    sort_order: SortOrder = Query("DESC", alias="sortOrder"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List tasks created by or assigned to the caller.

    - **projectId**, **status**, **priority**, **assignedTo**: Filters
    - **search**: Case-insensitive text match on title and description
    - **sortBy** / **sortOrder**: Ordering (default: createdAt DESC)
    - **page** / **limit**: Pagination (default: 1 / 10)
    """
    tasks, total = crud.list_tasks_for_user(
        db,
        current_user.id,
        project_id=project_id,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": {
            "tasks": [schemas.TaskResponse.model_validate(t) for t in tasks],
            "pagination": crud.pagination(total, page, limit),
        },
    }


@router.post("", response_model=schemas.ApiResponse[schemas.TaskData], status_code=201)
def create_task(
    data: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a task in a project the caller can access.

    - **title**: 3-200 characters
    - **projectId**: Owning project
    - **assignedToId**: Must be the project owner or a member (optional)
    - **priority**, **dueDate**, **estimatedHours**, **labels**, **position** (optional)
    - **dependencies**: IDs of tasks in the same project (optional)
    """
    access = permissions.check_project_access(db, current_user.id, data.project_id)
    try:
        task = crud.create_task(db, data, access.project, current_user.id)
    except Exception as e:
        logger.error(f"Error creating task: {e}", exc_info=True)
        raise
    logger.info(f"Created task '{task.title}' (ID: {task.id}) in project {task.project_id}")
    return {"success": True, "message": "Task created successfully", "data": _task_data(task)}


@router.get("/{task_id}", response_model=schemas.ApiResponse[schemas.TaskData])
def get_task(
    access: permissions.TaskAccess = Depends(task_access),
):
    """Get a task with comments, time entries, subtasks, activity and attachments."""
    return {"success": True, "data": _task_data(access.task)}


@router.put("/{task_id}", response_model=schemas.ApiResponse[schemas.TaskData])
def update_task(
    data: schemas.TaskUpdate,
    access: permissions.TaskAccess = Depends(task_access),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Update a task. Only provided fields change.

    Moving a task into or out of **completed** updates the project's progress.
    """
    task = crud.update_task(db, access.task, data, current_user.id)
    logger.info(f"Updated task {task.id}")
    return {"success": True, "message": "Task updated successfully", "data": _task_data(task)}


@router.delete("/{task_id}", response_model=schemas.ApiResponse[None])
def delete_task(
    access: permissions.TaskAccess = Depends(task_access),
    db: Session = Depends(get_db),
):
    """Delete a task and its sub-resources."""
    task_id = access.task.id
    crud.delete_task(db, access.task)
    logger.info(f"Deleted task {task_id}")
    return {"success": True, "message": "Task deleted successfully"}


@router.post("/{task_id}/comments", response_model=schemas.ApiResponse[schemas.CommentData], status_code=201)
def add_comment(
    data: schemas.CommentCreate,
    access: permissions.TaskAccess = Depends(task_access),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add a comment (1-1000 characters)."""
    comment = crud.add_comment(db, access.task, current_user.id, data.content)
    return {
        "success": True,
        "message": "Comment added successfully",
        "data": {"comment": schemas.CommentResponse.model_validate(comment)},
    }


@router.post("/{task_id}/time-entries", response_model=schemas.ApiResponse[schemas.TimeEntryData], status_code=201)
def add_time_entry(
    data: schemas.TimeEntryCreate,
    access: permissions.TaskAccess = Depends(task_access),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Log time on a task.

    - **startTime** / **endTime**: ISO timestamps; end must be after start
    - **description**: Up to 500 characters (optional)
    """
    entry = crud.add_time_entry(
        db, access.task, current_user.id, data.start_time, data.end_time, data.description
    )
    return {
        "success": True,
        "message": "Time entry added successfully",
        "data": schemas.TimeEntryData(time_entry=schemas.TimeEntryResponse.model_validate(entry)),
    }


@router.post("/{task_id}/subtasks", response_model=schemas.ApiResponse[schemas.SubtaskData], status_code=201)
def add_subtask(
    data: schemas.SubtaskCreate,
    access: permissions.TaskAccess = Depends(task_access),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add a subtask (title 1-200 characters)."""
    subtask = crud.add_subtask(db, access.task, current_user.id, data.title, data.description)
    return {
        "success": True,
        "message": "Subtask added successfully",
        "data": {"subtask": schemas.SubtaskResponse.model_validate(subtask)},
    }


@router.put("/{task_id}/subtasks/{subtask_id}", response_model=schemas.ApiResponse[schemas.SubtaskData])
def update_subtask(
    subtask_id: UUID,
    data: schemas.SubtaskUpdate,
    access: permissions.TaskAccess = Depends(task_access),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Patch a subtask's title, description or completed flag."""
    subtask = crud.update_subtask(db, access.task, subtask_id, current_user.id, data)
    return {
        "success": True,
        "message": "Subtask updated successfully",
        "data": {"subtask": schemas.SubtaskResponse.model_validate(subtask)},
    }
