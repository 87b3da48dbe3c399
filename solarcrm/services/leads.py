"""
Lead lifecycle: intake, landing-page submission, assignment, status, notes.
"""
import secrets
import string
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from ..auth.roles import RoleName, SALES_STAFF
from ..auth.security import get_password_hash
from ..config import settings
from ..errors import DomainValidationError, NotFoundError
from ..models.models import Lead, LeadNote, Notification, Project, User
from . import notifications, permissions, projects


LEAD_STATUSES = ("new", "assigned", "contacted", "qualified", "converted", "lost")
TERMINAL_STATUSES = ("converted", "lost")
OPEN_STATUSES = ("new", "assigned", "contacted")

_STATUS_RANK = {
    "new": 0,
    "assigned": 1,
    "contacted": 2,
    "qualified": 3,
    "converted": 4,
    "lost": 4,
}

DEFAULT_SOURCE = "website"
LANDING_SOURCE = "landing_page"
DEFAULT_PROJECT_NAME = "Meine Solar-Planung"


def create_lead(
    db: Session,
    name: str,
    email: str,
    request_type: str,
    phone: Optional[str] = None,
    message: Optional[str] = None,
    source: Optional[str] = None,
    account_created: bool = False,
    project_id: Optional[uuid.UUID] = None,
) -> Lead:
    lead = Lead(
        name=name,
        email=str(email),
        phone=phone,
        message=message,
        request_type=request_type,
        status="new",
        source=source or DEFAULT_SOURCE,
        account_created=account_created,
        project_id=project_id,
    )
    db.add(lead)
    db.flush()
    structlog.get_logger().info("lead_created", lead_id=str(lead.id), source=lead.source, request_type=request_type)
    return lead


def generate_password(length: int = 12) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def submit_landing_lead(
    db: Session,
    data: Dict[str, Any],
) -> Tuple[Lead, Optional[User], Optional[Notification]]:
    """
    Landing-page submission. With create_account the user, their project and
    the lead are written together and a welcome e-mail is queued; the caller
    commits once.
    """
    user: Optional[User] = None
    project: Optional[Project] = None
    welcome: Optional[Notification] = None
    create_account = bool(data.get("create_account"))

    if create_account:
        email = str(data["email"])
        if db.query(User).filter(func.lower(User.email) == email.lower()).first():
            raise DomainValidationError({
                "email": [
                    "Ein Benutzer mit dieser E-Mail-Adresse existiert bereits. "
                    "Bitte melden Sie sich an oder verwenden Sie eine andere E-Mail-Adresse."
                ]
            })
        password = generate_password()
        user = User(
            name=data["name"],
            email=email,
            password_hash=get_password_hash(password),
            phone=data.get("phone"),
            email_verified_at=datetime.utcnow(),
        )
        db.add(user)
        db.flush()
        permissions.assign_role(db, user, RoleName.USER)

        project_data = data.get("project_data")
        if project_data:
            project = projects.create_project(
                db,
                user,
                name=project_data.get("name") or DEFAULT_PROJECT_NAME,
                location_lat=project_data.get("location_lat") or 0,
                location_lng=project_data.get("location_lng") or 0,
                map_center=project_data.get("map_center"),
                zoom=project_data.get("zoom") or 18,
                roof_areas=project_data.get("roof_areas") or [],
            )

        welcome = notifications.queue_email(
            db,
            "welcome_user",
            user.email,
            {
                "name": user.name,
                "email": user.email,
                "password": password,
                "project_name": project.name if project else DEFAULT_PROJECT_NAME,
            },
            user_id=user.id,
        )
        structlog.get_logger().info("landing_account_created", user_id=str(user.id))

    lead = create_lead(
        db,
        name=data["name"],
        email=data["email"],
        request_type=data["request_type"],
        phone=data.get("phone"),
        message=data.get("message"),
        source=LANDING_SOURCE,
        account_created=create_account,
        project_id=project.id if project else None,
    )
    return lead, user, welcome


def get_lead(db: Session, lead_id: uuid.UUID, with_details: bool = False) -> Lead:
    q = db.query(Lead).options(joinedload(Lead.assigned_salesperson))
    if with_details:
        q = q.options(joinedload(Lead.project), joinedload(Lead.notes).joinedload(LeadNote.user))
    lead = q.filter(Lead.id == lead_id).first()
    if not lead:
        raise NotFoundError("Lead not found")
    return lead


def list_leads(
    db: Session,
    actor: Optional[User] = None,
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
):
    """Newest first. assigned_to accepts 'unassigned', 'mine', 'all' or a user id."""
    q = db.query(Lead).options(joinedload(Lead.assigned_salesperson))
    if status and status != "all":
        q = q.filter(Lead.status == status)
    if assigned_to and assigned_to != "all":
        if assigned_to == "unassigned":
            q = q.filter(Lead.assigned_to.is_(None))
        elif assigned_to == "mine":
            q = q.filter(Lead.assigned_to == (actor.id if actor else None))
        else:
            try:
                q = q.filter(Lead.assigned_to == uuid.UUID(assigned_to))
            except ValueError:
                raise DomainValidationError({"assigned_to": ["Invalid user id"]})
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Lead.name.ilike(like), Lead.email.ilike(like), Lead.phone.ilike(like)))
    return q.order_by(Lead.created_at.desc())


def _assignable_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise DomainValidationError({"assigned_to": ["The selected user does not exist."]})
    if not permissions.has_any_role(user, SALES_STAFF):
        raise DomainValidationError({"assigned_to": ["The selected user is not a sales or admin user."]})
    return user


def _status_after_assignment(current: str, target: str) -> str:
    if not settings.lead_status_forward_only or current == target:
        return target
    # Clearing the assignee of a merely assigned lead is not a step back
    if current == "assigned" and target == "new":
        return target
    if current in TERMINAL_STATUSES or _STATUS_RANK[target] < _STATUS_RANK.get(current, 0):
        return current
    return target


def assign_lead(db: Session, lead: Lead, assignee_id: Optional[uuid.UUID]) -> Optional[Notification]:
    """
    Set or clear the assignee. Assigning moves the lead to 'assigned',
    clearing moves it back to 'new'. With forward-only statuses a lead that
    is already further along keeps its status. A lead_assigned e-mail is
    queued only when the assignee changes to a different person.
    """
    previous = lead.assigned_to
    queued: Optional[Notification] = None
    if assignee_id is None:
        lead.assigned_to = None
        lead.status = _status_after_assignment(lead.status, "new")
        lead.assigned_salesperson = None
    else:
        salesperson = _assignable_user(db, assignee_id)
        lead.assigned_to = salesperson.id
        lead.assigned_salesperson = salesperson
        lead.status = _status_after_assignment(lead.status, "assigned")
        if salesperson.id != previous:
            queued = notifications.queue_email(
                db,
                "lead_assigned",
                salesperson.email,
                lead_assigned_payload(salesperson, lead),
                user_id=salesperson.id,
            )
    lead.updated_at = datetime.utcnow()
    db.flush()
    structlog.get_logger().info(
        "lead_assigned",
        lead_id=str(lead.id),
        assigned_to=str(lead.assigned_to) if lead.assigned_to else None,
        previous=str(previous) if previous else None,
    )
    return queued


def lead_assigned_payload(salesperson: User, lead: Lead) -> Dict[str, Any]:
    return {
        "salesperson": {"name": salesperson.name, "email": salesperson.email},
        "lead": {
            "name": lead.name,
            "email": lead.email,
            "phone": lead.phone,
            "request_type": lead.request_type,
            "message": lead.message,
            "source": lead.source,
            "account_created": lead.account_created,
        },
    }


def check_transition(old: str, new: str) -> None:
    if new not in LEAD_STATUSES:
        raise DomainValidationError({"status": [f"Unknown lead status '{new}'"]})
    if not settings.lead_status_forward_only or old == new:
        return
    if old in TERMINAL_STATUSES:
        raise DomainValidationError({"status": [f"Lead is already '{old}' and cannot change status"]})
    if _STATUS_RANK[new] < _STATUS_RANK.get(old, 0):
        raise DomainValidationError({"status": [f"Cannot move lead back from '{old}' to '{new}'"]})


def update_status(db: Session, lead: Lead, new_status: str) -> Lead:
    check_transition(lead.status, new_status)
    old = lead.status
    lead.status = new_status
    lead.updated_at = datetime.utcnow()
    db.flush()
    structlog.get_logger().info("lead_status_changed", lead_id=str(lead.id), old=old, new=new_status)
    return lead


def update_lead(db: Session, lead: Lead, changes: Dict[str, Any]) -> Lead:
    if changes.get("status") is not None:
        update_status(db, lead, changes["status"])
    if "message" in changes:
        lead.message = changes["message"]
        lead.updated_at = datetime.utcnow()
        db.flush()
    return lead


def delete_lead(db: Session, lead: Lead) -> None:
    lead_id = lead.id
    db.delete(lead)
    db.flush()
    structlog.get_logger().info("lead_deleted", lead_id=str(lead_id))


def add_note(db: Session, lead: Lead, author: User, content: str) -> LeadNote:
    note = LeadNote(lead_id=lead.id, user_id=author.id, content=content, created_at=datetime.utcnow())
    db.add(note)
    db.flush()
    return note


def delete_note(db: Session, lead: Lead, note_id: uuid.UUID) -> None:
    note = db.query(LeadNote).filter(LeadNote.id == note_id).first()
    if not note or note.lead_id != lead.id:
        raise NotFoundError("Note not found")
    db.delete(note)
    db.flush()


def conversion_rate(converted: int, lost: int) -> float:
    closed = converted + lost
    if closed == 0:
        return 0.0
    return round(converted / closed * 100, 1)


def dashboard_stats(db: Session, actor: User) -> Dict[str, Any]:
    counts = dict(db.query(Lead.status, func.count(Lead.id)).group_by(Lead.status).all())
    mine = dict(
        db.query(Lead.status, func.count(Lead.id))
        .filter(Lead.assigned_to == actor.id)
        .group_by(Lead.status)
        .all()
    )
    my_projects = (
        db.query(func.count(Project.id))
        .join(Lead, Lead.project_id == Project.id)
        .filter(Lead.assigned_to == actor.id, Project.deleted_at.is_(None))
        .scalar()
    )
    stats: Dict[str, Any] = {
        "total_leads": sum(counts.values()),
        "my_leads": sum(mine.values()),
        "conversion_rate": conversion_rate(counts.get("converted", 0), counts.get("lost", 0)),
        "my_conversion_rate": conversion_rate(mine.get("converted", 0), mine.get("lost", 0)),
        "total_projects": db.query(func.count(Project.id)).filter(Project.deleted_at.is_(None)).scalar(),
        "my_projects": my_projects,
    }
    for s in LEAD_STATUSES:
        stats[f"{s}_leads"] = counts.get(s, 0)
        stats[f"my_{s}_leads"] = mine.get(s, 0)
    return stats


def leads_needing_attention(db: Session, actor: User, limit: int = 5) -> List[Lead]:
    return (
        db.query(Lead)
        .filter(Lead.assigned_to == actor.id, Lead.status.in_(OPEN_STATUSES))
        .order_by(Lead.created_at.asc())
        .limit(limit)
        .all()
    )


def recent_leads(db: Session, limit: int = 10) -> List[Lead]:
    return (
        db.query(Lead)
        .options(joinedload(Lead.assigned_salesperson))
        .order_by(Lead.created_at.desc())
        .limit(limit)
        .all()
    )
