"""Identity and credential store: registration, login, tokens and password flows."""
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models, schemas
from .config import get_settings
from .errors import (
    AuthenticationError,
    DuplicateEmail,
    IncorrectPassword,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidToken,
    UserNotFound,
)
from .security import (
    RESET_PURPOSE,
    create_token,
    decode_token,
    hash_password,
    password_fingerprint,
    verify_password,
)

logger = logging.getLogger("taskboard-core.identity")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == normalize_email(email)).first()


def merge_preferences(current: Optional[dict], update: Optional[schemas.PreferencesUpdate]) -> dict:
    """Overlay the provided preference keys onto the stored ones."""
    merged = dict(models.DEFAULT_PREFERENCES)
    merged.update(current or {})
    if update is not None:
        merged.update(update.model_dump(exclude_unset=True))
    return merged


def register(db: Session, data: schemas.RegisterRequest) -> tuple[models.User, str]:
    """
    Create a new account and issue a session token.

    Args:
        db: Database session
        data: Registration payload

    Returns:
        Tuple of (created user, session token)

    Raises:
        DuplicateEmail: If the email is already registered (case-insensitive)
    """
    email = normalize_email(data.email)
    if get_user_by_email(db, email):
        logger.info(f"Registration rejected, email already in use: {email}")
        raise DuplicateEmail()

    user = models.User(
        first_name=data.first_name,
        last_name=data.last_name,
        email=email,
        password_hash=hash_password(data.password),
        role=models.UserRole(data.role),
        preferences=dict(models.DEFAULT_PREFERENCES),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"Registered user {user.id} ({user.email})")
    return user, create_token(user.id)


def authenticate(db: Session, email: str, password: str) -> tuple[models.User, str]:
    """
    Verify credentials, record the login and issue a session token.

    Raises:
        InvalidCredentials: Unknown email, wrong password or inactive account
    """
    user = get_user_by_email(db, email)
    if not user or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for {normalize_email(email)}")
        raise InvalidCredentials()
    if not user.is_active:
        logger.info(f"Login refused for deactivated account {user.id}")
        raise InvalidCredentials("Account is deactivated. Please contact administrator.")

    user.last_login = datetime.utcnow()
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.id} logged in")
    return user, create_token(user.id)


def verify_token(token: str) -> UUID:
    """Return the user id bound to a valid session token."""
    return decode_token(token)["sub"]


def get_active_user(db: Session, token: str) -> models.User:
    """
    Resolve a session token to an active user.

    Raises:
        InvalidToken: Bad or expired token
        AuthenticationError: User missing or deactivated
    """
    user_id = verify_token(token)
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")
    return user


def change_password(db: Session, user: models.User, current_password: str, new_password: str) -> None:
    """
    Replace a user's password after checking the current one.

    Raises:
        IncorrectPassword: If current_password does not match
    """
    if not verify_password(current_password, user.password_hash):
        logger.info(f"Password change rejected for user {user.id}")
        raise IncorrectPassword()

    user.password_hash = hash_password(new_password)
    db.commit()
    logger.info(f"Password changed for user {user.id}")


def issue_reset_token(db: Session, email: str) -> str:
    """
    Issue a one-hour password reset token.

    The token is bound to the current password hash, so it stops working
    once the password has been changed.

    Raises:
        UserNotFound: If no account uses this email
    """
    user = get_user_by_email(db, email)
    if not user:
        raise UserNotFound()

    token = create_token(
        user.id,
        purpose=RESET_PURPOSE,
        ttl=timedelta(minutes=get_settings().reset_token_ttl_minutes),
        extra_claims={"pwd": password_fingerprint(user.password_hash)},
    )
    # Delivery by email is not wired up; the route decides whether to expose the token
    logger.info(f"Password reset requested for user {user.id}")
    return token


def reset_password(db: Session, token: str, new_password: str) -> models.User:
    """
    Set a new password using a reset token.

    Raises:
        InvalidOrExpiredToken: Bad, expired, reused or non-reset token
    """
    try:
        claims = decode_token(token, purpose=RESET_PURPOSE)
    except InvalidToken as e:
        raise InvalidOrExpiredToken() from e

    user = db.query(models.User).filter(models.User.id == claims["sub"]).first()
    if not user or claims.get("pwd") != password_fingerprint(user.password_hash):
        raise InvalidOrExpiredToken()

    user.password_hash = hash_password(new_password)
    db.commit()
    db.refresh(user)
    logger.info(f"Password reset completed for user {user.id}")
    return user


def update_profile(db: Session, user: models.User, data: schemas.ProfileUpdate) -> models.User:
    """Apply a self-service profile update; preferences are merged, not replaced."""
    changes = data.model_dump(exclude_unset=True, exclude={"preferences"})
    for field, value in changes.items():
        if value is not None:
            setattr(user, field, value)

    if data.preferences is not None:
        user.preferences = merge_preferences(user.preferences, data.preferences)

    db.commit()
    db.refresh(user)
    logger.info(f"Profile updated for user {user.id}")
    return user
