"""
User Service — authentication and user management.

All user persistence lives here so blueprints never touch db.session.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import or_

from crm.core.exceptions import ConflictError, NotFoundError, ValidationError
from crm.core.transaction import atomic
from crm.models import db
from crm.models.auth import USER_ROLES, User
from crm.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def authenticate_user(username: str, password: str) -> User | None:
    """Return the active user matching the credentials, or None.

    A successful login stamps ``last_login``.
    """
    user = User.query.filter_by(username=username, is_active=True).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for username=%s", username)
        return None

    with atomic():
        user.last_login = datetime.now(timezone.utc)
    logger.info("User logged in id=%s", user.id)
    return user


def get_active_user(user_id: int) -> User | None:
    """Fetch a user by PK, only if the account is active."""
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def list_users() -> list[dict]:
    return [u.to_dict() for u in User.query.order_by(User.username).all()]


def create_user(data: dict) -> dict:
    """Create a user account.

    Raises:
        ValidationError: On missing/invalid username, email, password or role.
        ConflictError: If username or email is already taken.
    """
    username = (data.get("username") or "").strip()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    role = data.get("role", "user")

    if not username or not email or not password:
        raise ValidationError("Username, email and password are required.")
    if len(username) > 50:
        raise ValidationError("Username must be 50 characters or fewer.")
    try:
        email = validate_email(email, check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValidationError(f"Email address is not valid: {exc}") from exc
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if role not in USER_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(USER_ROLES)}")

    existing = User.query.filter(or_(User.username == username, User.email == email)).first()
    if existing:
        field = "username" if existing.username == username else "email"
        raise ConflictError("User", field, username if field == "username" else email)

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        role=role,
        language=data.get("language") or "en",
    )
    with atomic():
        db.session.add(user)
    logger.info("User created id=%s role=%s", user.id, role)
    return user.to_dict()


def ensure_admin(username: str, email: str, password: str) -> User:
    """Create the admin account, or reset its password and role if it exists."""
    user = User.query.filter_by(username=username).first()
    with atomic():
        if user is None:
            user = User(username=username, email=email.strip().lower())
            db.session.add(user)
        user.password_hash = hash_password(password)
        user.role = "admin"
        user.is_active = True
    logger.info("Admin user ensured id=%s", user.id)
    return user


def deactivate_user(user_id: int) -> None:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    with atomic():
        user.is_active = False
    logger.info("User deactivated id=%s", user_id)
