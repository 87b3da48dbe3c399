import secrets
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import PasswordReset, User
from ..schemas.auth import (
    LoginRequest,
    TokenResponse,
    MeResponse,
    PasswordForgotRequest,
    PasswordResetRequest,
)
from ..services import notifications, permissions
from .security import (
    ACCESS_COOKIE,
    create_access_token,
    get_current_user,
    get_password_hash,
    verify_password,
)
import structlog


router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/auth/login", response_model=TokenResponse)
def login(req: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = db.query(User).filter(func.lower(User.email) == str(req.email).lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    access = create_access_token(str(user.id), roles=permissions.roles_of(user))
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    # Browser routes read the same token from a cookie
    response.set_cookie(ACCESS_COOKIE, access, httponly=True, samesite="lax", max_age=settings.jwt_ttl_seconds)
    structlog.get_logger().info("user_logged_in", user_id=str(user.id))
    return TokenResponse(access_token=access)


@router.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie(ACCESS_COOKIE)
    return {"status": "ok"}


@router.get("/user", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        roles=permissions.roles_of(user),
        permissions=sorted(permissions.permissions_of(user)),
    )


# Password reset
@router.post("/auth/password/forgot")
def password_forgot(req: PasswordForgotRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    user = db.query(User).filter(func.lower(User.email) == str(req.email).lower()).first()
    if not user:
        return {"status": "ok"}
    token = secrets.token_urlsafe(32)
    pr = PasswordReset(
        user_id=user.id,
        token=token,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.password_reset_expire_minutes),
    )
    db.add(pr)
    reset_url = f"{settings.public_base_url.rstrip('/')}/reset-password/{token}"
    queued = notifications.queue_email(
        db,
        "password_reset",
        user.email,
        {"reset_url": reset_url, "expire_minutes": settings.password_reset_expire_minutes},
        user_id=user.id,
    )
    db.commit()
    notifications.schedule_delivery(background_tasks, [queued])
    return {"status": "ok"}


@router.post("/auth/password/reset")
def password_reset(req: PasswordResetRequest, db: Session = Depends(get_db)):
    pr = db.query(PasswordReset).filter(PasswordReset.token == req.token).first()
    if not pr:
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    # Normalize datetimes to UTC-aware before comparison
    now_utc = datetime.now(timezone.utc)
    expires_at = pr.expires_at
    if expires_at and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if pr.used_at is not None or (expires_at and expires_at < now_utc):
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    user = db.query(User).filter(User.id == pr.user_id).first()
    if not user:
        raise HTTPException(status_code=400, detail="Invalid token")
    user.password_hash = get_password_hash(req.password)
    pr.used_at = now_utc
    db.commit()
    structlog.get_logger().info("password_reset_completed", user_id=str(user.id))
    return {"status": "ok"}
