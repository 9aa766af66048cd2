"""Users API endpoints (admin management and user search)."""
import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskboard_core import crud, models, schemas
from taskboard_core.errors import AccessDenied, Forbidden, UserNotFound, ValidationError

from ...database import get_db
from ..dependencies import get_current_user, require_roles

logger = logging.getLogger("taskboard-core.users")

router = APIRouter(tags=["users"])

UserSortField = Literal["createdAt", "firstName", "lastName", "email", "role", "lastLogin"]
SortOrder = Literal["ASC", "DESC", "asc", "desc"]


def _is_admin(user: models.User) -> bool:
    return models.UserRole(user.role) == models.UserRole.ADMIN


def _get_user_for(db: Session, user_id: UUID, current_user: models.User) -> models.User:
    """Load a user that the caller may view: themselves, or anyone for admins."""
    if user_id != current_user.id and not _is_admin(current_user):
        raise AccessDenied()
    user = crud.get_user(db, user_id)
    if not user:
        raise UserNotFound()
    return user


@router.get("", response_model=schemas.ApiResponse[schemas.UserListData])
def list_users(
    role: Optional[models.UserRole] = Query(None, description="Filter by role"),
    is_active: Optional[bool] = Query(None, alias="isActive", description="Filter by active flag"),
    search: Optional[str] = Query(None, description="Search in name and email"),
    sort_by: UserSortField = Query("createdAt", alias="sortBy"),
    sort_order: SortOrder = Query("DESC", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: models.User = Depends(require_roles(models.UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    """
    List users. Admin only.

    - **role**, **isActive**: Filters
    - **search**: Case-insensitive match on first name, last name and email
    - **page** / **limit**: Pagination
    """
    users, total = crud.list_users(
        db,
        role=role,
        is_active=is_active,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": {
            "users": [schemas.UserResponse.model_validate(u) for u in users],
            "pagination": crud.pagination(total, page, limit),
        },
    }


@router.get("/search", response_model=schemas.ApiResponse[schemas.UserSearchData])
def search_users(
    q: str = Query(..., min_length=2, description="At least 2 characters"),
    project_id: Optional[UUID] = Query(None, alias="projectId", description="Exclude this project's team"),
    limit: int = Query(10, ge=1, le=50),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Search active users by name or email, e.g. to add them to a project.

    The caller is never included; with **projectId**, neither are the
    project's owner and members.
    """
    users = crud.search_users(db, current_user.id, q.strip(), project_id=project_id, limit=limit)
    return {
        "success": True,
        "data": {"users": [schemas.UserSearchResult.model_validate(u) for u in users]},
    }


@router.get("/{user_id}", response_model=schemas.ApiResponse[schemas.UserData])
def get_user(
    user_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get a user. Users may view themselves; admins may view anyone."""
    user = _get_user_for(db, user_id, current_user)
    return {"success": True, "data": {"user": schemas.UserResponse.model_validate(user)}}


@router.put("/{user_id}", response_model=schemas.ApiResponse[schemas.UserData])
def update_user(
    user_id: UUID,
    data: schemas.UserAdminUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Update a user.

    Users may update their own name, email and preferences; only admins
    may change **role** or **isActive**, or edit other users.
    """
    user = _get_user_for(db, user_id, current_user)
    if not _is_admin(current_user) and ({"role", "is_active"} & data.model_fields_set):
        raise Forbidden("You can only update your own profile information")

    user = crud.update_user(db, user, data)
    logger.info(f"User {current_user.id} updated user {user.id}")
    return {
        "success": True,
        "message": "User updated successfully",
        "data": {"user": schemas.UserResponse.model_validate(user)},
    }


@router.delete("/{user_id}", response_model=schemas.ApiResponse[None])
def delete_user(
    user_id: UUID,
    current_user: models.User = Depends(require_roles(models.UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    """
    Delete a user. Admin only.

    Refused for the caller's own account, for project owners and for
    users with assigned tasks.
    """
    if user_id == current_user.id:
        raise ValidationError("You cannot delete your own account")
    user = crud.get_user(db, user_id)
    if not user:
        raise UserNotFound()

    crud.delete_user(db, user)
    logger.info(f"Admin {current_user.id} deleted user {user_id}")
    return {"success": True, "message": "User deleted successfully"}


@router.get("/{user_id}/stats", response_model=schemas.ApiResponse[schemas.UserStatsData])
def get_user_stats(
    user_id: UUID,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Project and task statistics for a user (self or admin)."""
    user = _get_user_for(db, user_id, current_user)
    return {"success": True, "data": {"stats": crud.get_user_stats(db, user.id)}}
