import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..auth.roles import ADMIN_ONLY, SALES_STAFF, PermissionName, RoleName
from ..auth.security import require_permissions, require_roles
from ..db import get_db
from ..errors import DomainValidationError
from ..models.models import Lead, User
from ..resources import lead_to_dict
from ..schemas.leads import LeadAssign, LeadCreate, LeadUpdate
from ..services import leads as lead_service
from ..services import notifications, permissions


router = APIRouter(prefix="/api/leads", tags=["leads"])


def _visible_lead(db: Session, lead_id: uuid.UUID, user: User) -> Lead:
    # Admins see every lead, sales only the ones assigned to them
    lead = lead_service.get_lead(db, lead_id)
    if not permissions.has_role(user, RoleName.ADMIN) and lead.assigned_to != user.id:
        raise HTTPException(status_code=403, detail="Unauthorized access to this lead")
    return lead


@router.post("", status_code=status.HTTP_201_CREATED)
def create_lead(payload: LeadCreate, db: Session = Depends(get_db)):
    """Public contact-form intake."""
    lead = lead_service.create_lead(db, **payload.model_dump())
    db.commit()
    return lead_to_dict(lead)


@router.get("")
def list_leads(
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*SALES_STAFF)),
):
    limit = min(max(1, limit), 200)
    page = max(1, page)
    if not permissions.has_role(user, RoleName.ADMIN):
        assigned_to = "mine"
    query = lead_service.list_leads(db, actor=user, status=status, assigned_to=assigned_to, search=search)
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [lead_to_dict(l) for l in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


@router.get("/{lead_id}")
def get_lead(lead_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(require_roles(*SALES_STAFF))):
    return lead_to_dict(_visible_lead(db, lead_id, user))


@router.patch("/{lead_id}")
def update_lead(
    lead_id: uuid.UUID,
    payload: LeadUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PermissionName.EDIT_LEADS)),
):
    lead = _visible_lead(db, lead_id, user)
    lead_service.update_lead(db, lead, payload.model_dump(exclude_unset=True))
    db.commit()
    return lead_to_dict(lead)


@router.post("/{lead_id}/assign")
def assign_lead(
    lead_id: uuid.UUID,
    payload: LeadAssign,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(require_roles(*ADMIN_ONLY)),
):
    if payload.assigned_to is None:
        raise DomainValidationError({"assigned_to": ["The assigned_to field is required."]})
    lead = lead_service.get_lead(db, lead_id)
    queued = lead_service.assign_lead(db, lead, payload.assigned_to)
    db.commit()
    notifications.schedule_delivery(background_tasks, [queued])
    return lead_to_dict(lead)


@router.delete("/{lead_id}")
def delete_lead(lead_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_roles(*ADMIN_ONLY))):
    lead_service.delete_lead(db, lead_service.get_lead(db, lead_id))
    db.commit()
    return {"message": "Lead deleted successfully"}
