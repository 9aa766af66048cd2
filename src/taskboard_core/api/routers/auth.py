"""Authentication API endpoints."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from taskboard_core import identity, models, schemas
from taskboard_core.config import get_settings

from ...database import get_db
from ..dependencies import get_current_user

logger = logging.getLogger("taskboard-core.auth")

router = APIRouter(tags=["auth"])


@router.post("/register", response_model=schemas.ApiResponse[schemas.AuthData], status_code=201)
def register(
    data: schemas.RegisterRequest,
    db: Session = Depends(get_db),
):
    """
    Register a new user.

    - **firstName** / **lastName**: 2-50 characters
    - **email**: Unique, case-insensitive
    - **password**: At least 6 characters
    - **role**: admin, manager or member (default: member)
    """
    user, token = identity.register(db, data)
    logger.info(f"User registered: {user.id}")
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"user": schemas.UserResponse.model_validate(user), "token": token},
    }


@router.post("/login", response_model=schemas.ApiResponse[schemas.AuthData])
def login(
    data: schemas.LoginRequest,
    db: Session = Depends(get_db),
):
    """
    Log in with email and password.

    Returns the user profile and a session token for the Authorization header.
    """
    user, token = identity.authenticate(db, data.email, data.password)
    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": schemas.UserResponse.model_validate(user), "token": token},
    }


@router.get("/me", response_model=schemas.ApiResponse[schemas.UserData])
def get_me(
    current_user: models.User = Depends(get_current_user),
):
    """Get the authenticated user's profile."""
    return {"success": True, "data": {"user": schemas.UserResponse.model_validate(current_user)}}


@router.put("/profile", response_model=schemas.ApiResponse[schemas.UserData])
def update_profile(
    data: schemas.ProfileUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Update the authenticated user's profile.

    - **firstName** / **lastName**: 2-50 characters (optional)
    - **avatar**: Avatar URL (optional)
    - **preferences**: Merged into the stored preferences (theme, notifications, language)
    """
    user = identity.update_profile(db, current_user, data)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": {"user": schemas.UserResponse.model_validate(user)},
    }


@router.put("/password", response_model=schemas.ApiResponse[None])
def change_password(
    data: schemas.PasswordChange,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Change the authenticated user's password."""
    identity.change_password(db, current_user, data.current_password, data.new_password)
    return {"success": True, "message": "Password changed successfully"}


@router.post("/forgot-password", response_model=schemas.ApiResponse[schemas.ResetTokenData])
def forgot_password(
    data: schemas.ForgotPasswordRequest,
    db: Session = Depends(get_db),
):
    """
    Start the password recovery flow.

    The reset token is only included in the response in development;
    email delivery is not implemented.
    """
    token = identity.issue_reset_token(db, data.email)
    exposed = token if get_settings().is_development else None
    return {
        "success": True,
        "message": "Password reset email sent",
        "data": schemas.ResetTokenData(reset_token=exposed),
    }


@router.post("/reset-password", response_model=schemas.ApiResponse[None])
def reset_password(
    data: schemas.ResetPasswordRequest,
    db: Session = Depends(get_db),
):
    """Set a new password using a reset token."""
    identity.reset_password(db, data.token, data.new_password)
    return {"success": True, "message": "Password reset successfully"}
