"""Projects API endpoints."""
import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskboard_core import crud, models, permissions, schemas

from ...database import get_db
from ..dependencies import get_current_user, project_access, project_edit_access

logger = logging.getLogger("taskboard-core.projects")

router = APIRouter(tags=["projects"])

ProjectSortField = Literal["createdAt", "updatedAt", "name", "priority", "status", "endDate"]
SortOrder = Literal["ASC", "DESC", "asc", "desc"]


def _project_data(project: models.Project) -> dict:
    return {"project": schemas.ProjectResponse.model_validate(project)}


@router.get("", response_model=schemas.ApiResponse[schemas.ProjectListData])
def list_projects(
    status: Optional[models.ProjectStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.Priority] = Query(None, description="Filter by priority"),
    search: Optional[str] = Query(None, description="Search in name and description"),
    sort_by: ProjectSortField = Query("createdAt", alias="sortBy"),
    sort_order: SortOrder = Query("DESC", alias="sortOrder"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List projects the caller owns or is a member of.

    - **status**: Filter by project status
    - **priority**: Filter by priority
    - **search**: Case-insensitive text match on name and description
    - **sortBy** / **sortOrder**: Ordering (default: createdAt DESC)
    """
    projects = crud.list_projects_for_user(
        db,
        current_user.id,
        status=status,
        priority=priority,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "success": True,
        "data": {
            "projects": [schemas.ProjectResponse.model_validate(p) for p in projects],
            "count": len(projects),
        },
    }


@router.post("", response_model=schemas.ApiResponse[schemas.ProjectData], status_code=201)
def create_project(
    data: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a new project owned by the caller.

    - **name**: 3-100 characters
    - **description**: Up to 1000 characters (optional)
    - **startDate** / **endDate**: ISO dates; end must be after start
    - **priority**: low, medium, high or urgent (default: medium)
    - **budget**: Non-negative amount (default: 0)
    - **team**: Initial members as [{userId, role}] (optional)
    """
    try:
        project = crud.create_project(db, data, current_user.id)
    except Exception as e:
        logger.error(f"Error creating project: {e}", exc_info=True)
        raise
    logger.info(f"Created project '{project.name}' (ID: {project.id}) for user {current_user.id}")
    return {"success": True, "message": "Project created successfully", "data": _project_data(project)}


@router.get("/{project_id}", response_model=schemas.ApiResponse[schemas.ProjectDetailData])
def get_project(
    access: permissions.ProjectAccess = Depends(project_access),
):
    """Get a project with its team and task summaries."""
    return {
        "success": True,
        "data": {"project": schemas.ProjectDetailResponse.model_validate(access.project)},
    }


@router.put("/{project_id}", response_model=schemas.ApiResponse[schemas.ProjectData])
def update_project(
    data: schemas.ProjectUpdate,
    access: permissions.ProjectAccess = Depends(project_edit_access),
    db: Session = Depends(get_db),
):
    """
    Update a project. Requires owner or manager access.

    - **name**, **description**, **status**, **priority**, **budget** (optional)
    - **startDate** / **endDate**: End must stay after start
    """
    project = crud.update_project(db, access.project, data)
    logger.info(f"Updated project {project.id}")
    return {"success": True, "message": "Project updated successfully", "data": _project_data(project)}


@router.delete("/{project_id}", response_model=schemas.ApiResponse[None])
def delete_project(
    access: permissions.ProjectAccess = Depends(project_edit_access),
    db: Session = Depends(get_db),
):
    """
    Delete a project. Requires owner or manager access.

    Fails while the project still has tasks.
    """
    project_id = access.project.id
    crud.delete_project(db, access.project)
    logger.info(f"Deleted project {project_id}")
    return {"success": True, "message": "Project deleted successfully"}


@router.post("/{project_id}/team", response_model=schemas.ApiResponse[schemas.ProjectData])
def add_team_member(
    member: schemas.TeamMemberCreate,
    access: permissions.ProjectAccess = Depends(project_edit_access),
    db: Session = Depends(get_db),
):
    """
    Add a team member. Requires owner or manager access.

    - **userId**: User to add
    - **role**: owner, manager, member or viewer (default: member)
    """
    crud.add_project_member(db, access.project, member.user_id, member.role)
    logger.info(f"Added user {member.user_id} to project {access.project.id}")
    return {"success": True, "message": "Team member added successfully", "data": _project_data(access.project)}


@router.delete("/{project_id}/team/{user_id}", response_model=schemas.ApiResponse[schemas.ProjectData])
def remove_team_member(
    user_id: UUID,
    access: permissions.ProjectAccess = Depends(project_edit_access),
    db: Session = Depends(get_db),
):
    """Remove a team member. The project owner can never be removed."""
    crud.remove_project_member(db, access.project, user_id)
    logger.info(f"Removed user {user_id} from project {access.project.id}")
    return {"success": True, "message": "Team member removed successfully", "data": _project_data(access.project)}


@router.get("/{project_id}/analytics", response_model=schemas.ApiResponse[schemas.ProjectAnalyticsData])
def get_project_analytics(
    access: permissions.ProjectAccess = Depends(project_access),
    db: Session = Depends(get_db),
):
    """Task counts by status and priority, overdue count, recent tasks and progress."""
    analytics = crud.get_project_analytics(db, access.project)
    return {"success": True, "data": {"analytics": analytics}}
