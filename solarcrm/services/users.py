import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..auth.security import get_password_hash
from ..errors import ConflictError, DomainValidationError, NotFoundError
from ..models.models import User
from . import permissions


def _email_taken(db: Session, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    q = db.query(User).filter(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return db.query(q.exists()).scalar()


def get_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.query(User).options(selectinload(User.roles)).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def create_user(
    db: Session,
    name: str,
    email: str,
    password: str,
    role,
    phone: Optional[str] = None,
    verified: bool = True,
) -> User:
    """Staff-created accounts are verified immediately."""
    email = str(email)
    if _email_taken(db, email):
        raise ConflictError("The email has already been taken.")
    user = User(
        name=name,
        email=email,
        password_hash=get_password_hash(password),
        phone=phone,
        email_verified_at=datetime.utcnow() if verified else None,
    )
    db.add(user)
    db.flush()
    permissions.assign_role(db, user, role)
    structlog.get_logger().info("user_created", user_id=str(user.id), role=str(getattr(role, "value", role)))
    return user


def update_user(db: Session, user: User, changes: dict) -> User:
    if changes.get("email") is not None:
        email = str(changes["email"])
        if _email_taken(db, email, exclude_id=user.id):
            raise ConflictError("The email has already been taken.")
        user.email = email
    if changes.get("name") is not None:
        user.name = changes["name"]
    if "phone" in changes:
        user.phone = changes["phone"]
    if changes.get("password"):
        user.password_hash = get_password_hash(changes["password"])
    if changes.get("role") is not None:
        permissions.sync_roles(db, user, [changes["role"]])
    db.flush()
    return user


def verify_email(db: Session, user: User) -> User:
    if user.email_verified_at is not None:
        raise DomainValidationError({"user": ["Benutzer ist bereits verifiziert."]})
    user.email_verified_at = datetime.utcnow()
    db.flush()
    return user


def delete_user(db: Session, user: User, actor: User) -> None:
    if user.id == actor.id:
        raise DomainValidationError({"user": ["Sie können sich nicht selbst löschen."]})
    user_id = user.id
    db.delete(user)
    db.flush()
    structlog.get_logger().info("user_deleted", user_id=str(user_id), by=str(actor.id))
