import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, List, Tuple, Union

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import LoginRequired
from ..models.models import User
from ..services import permissions as perm_store
from .roles import PermissionName, RoleName, ROLE_DENIAL_REASONS


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

ACCESS_COOKIE = "access_token"


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # unknown or malformed hash
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, roles: Optional[List[str]] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, extra={"roles": roles or []})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def _load_user(db: Session, token: str) -> User:
    payload = decode_token(token)
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return _load_user(db, creds.credentials)


def get_optional_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """
    Actor for browser routes: bearer header first, then the session cookie set at login.
    A stale or invalid token counts as no actor.
    """
    token = creds.credentials if creds else request.cookies.get(ACCESS_COOKIE)
    if not token:
        return None
    try:
        return _load_user(db, token)
    except HTTPException:
        return None


def get_bearer_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Actor for /api routes: the bearer header only, the session cookie is ignored."""
    if creds is None:
        return None
    return _load_user(db, creds.credentials)


def _actor_dependency(web: bool):
    return get_optional_user if web else get_bearer_user


# --- Authorization gate ---------------------------------------------------

Requirement = Union[RoleName, Tuple[RoleName, ...], PermissionName]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    status_code: int = status.HTTP_200_OK
    reason: Optional[str] = None

    @property
    def unauthenticated(self) -> bool:
        return self.status_code == status.HTTP_401_UNAUTHORIZED


def _roles_reason(roles: Iterable[RoleName]) -> str:
    # Reason names the least privileged role that would have been admitted
    ordered = [r for r in (RoleName.USER, RoleName.SALES, RoleName.ADMIN) if r in set(roles)]
    if not ordered:
        return "Unauthorized access."
    return ROLE_DENIAL_REASONS[ordered[0]]


def evaluate(actor: Optional[User], requirement: Requirement) -> Decision:
    """
    Answer "may this actor do X". No role implies another; a guard that
    admits admin and sales must list both.
    """
    if actor is None:
        return Decision(False, status.HTTP_401_UNAUTHORIZED, "Not authenticated")

    if isinstance(requirement, PermissionName):
        if perm_store.has_permission(actor, requirement):
            return Decision(True)
        return Decision(False, status.HTTP_403_FORBIDDEN, f"Unauthorized access. Missing permission: {requirement.value}.")

    roles = (requirement,) if isinstance(requirement, RoleName) else tuple(requirement)
    if perm_store.has_any_role(actor, roles):
        return Decision(True)
    return Decision(False, status.HTTP_403_FORBIDDEN, _roles_reason(roles))


def _enforce(actor: Optional[User], requirement: Requirement, web: bool) -> User:
    decision = evaluate(actor, requirement)
    if decision.allowed:
        return actor
    if decision.unauthenticated:
        if web:
            raise LoginRequired(settings.login_path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=decision.reason)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)


def require_roles(*required_roles: RoleName, web: bool = False):
    """Admit an actor holding ANY of the listed roles."""
    if not required_roles:
        raise ValueError("require_roles needs at least one role")

    def _dep(user: Optional[User] = Depends(_actor_dependency(web))):
        return _enforce(user, tuple(required_roles), web)

    return _dep


def require_permissions(*required_permissions: PermissionName, web: bool = False):
    """
    Require at least one of the specified permissions (OR logic).
    """
    if not required_permissions:
        raise ValueError("require_permissions needs at least one permission")

    def _dep(user: Optional[User] = Depends(_actor_dependency(web))):
        for perm in required_permissions:
            if evaluate(user, perm).allowed:
                return user
        return _enforce(user, required_permissions[-1], web)

    return _dep
