"""
Sales workspace (browser routes). Anonymous visitors are redirected to the
login page; signed-in users without sales or admin get 403.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session, joinedload, selectinload

from ..auth.roles import RoleName, SALES_STAFF
from ..auth.security import require_roles
from ..db import get_db
from ..models.models import Lead, LeadNote, Project, Role, TimelineEvent, User
from ..resources import (
    display_time,
    lead_detail_to_dict,
    lead_to_dict,
    note_to_dict,
    project_to_dict,
    timeline_event_to_dict,
)
from ..schemas.leads import LeadAssign, LeadNoteCreate, LeadStatusUpdate
from ..schemas.projects import ProjectStatusUpdate, TimelineEventCreate
from ..services import leads as lead_service
from ..services import notifications, timeline
from ..services import projects as project_service


router = APIRouter(prefix="/sales", tags=["sales"])

sales_staff = require_roles(*SALES_STAFF, web=True)

STATUS_CHART = [
    ("new", "Neu", "#3b82f6"),
    ("assigned", "Zugewiesen", "#8b5cf6"),
    ("contacted", "Kontaktiert", "#eab308"),
    ("qualified", "Qualifiziert", "#6366f1"),
    ("converted", "Konvertiert", "#10b981"),
    ("lost", "Verloren", "#6b7280"),
]


def _days_old(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (datetime.now(timezone.utc) - dt).days


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), user: User = Depends(sales_staff)):
    stats = lead_service.dashboard_stats(db, user)
    return {
        "stats": stats,
        "status_breakdown": [
            {"name": label, "value": stats[f"{code}_leads"], "color": color} for code, label, color in STATUS_CHART
        ],
        "recent_leads": [
            dict(lead_to_dict(l), created_at_display=display_time(l.created_at))
            for l in lead_service.recent_leads(db)
        ],
        "my_leads_needing_attention": [
            {
                "id": str(l.id),
                "name": l.name,
                "email": l.email,
                "phone": l.phone,
                "status": l.status,
                "created_at_display": display_time(l.created_at),
                "days_old": _days_old(l.created_at),
            }
            for l in lead_service.leads_needing_attention(db, user)
        ],
    }


@router.get("/leads")
def leads_index(
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(sales_staff),
):
    rows = (
        lead_service.list_leads(db, actor=user, status=status, assigned_to=assigned_to, search=search)
        .options(joinedload(Lead.project), selectinload(Lead.notes).joinedload(LeadNote.user))
        .all()
    )
    sales_users = (
        db.query(User)
        .join(User.roles)
        .filter(Role.name == RoleName.SALES.value)
        .order_by(User.name)
        .all()
    )
    return {
        "leads": [lead_detail_to_dict(l) for l in rows],
        "sales_users": [{"id": str(u.id), "name": u.name} for u in sales_users],
        "filters": {
            "status": status or "all",
            "assigned_to": assigned_to or "all",
            "search": search or "",
        },
    }


@router.get("/leads/{lead_id}")
def lead_show(lead_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(sales_staff)):
    lead = lead_service.get_lead(db, lead_id, with_details=True)
    data = lead_detail_to_dict(lead)
    if lead.project is not None:
        project = project_service.get_project(db, lead.project_id, include_deleted=True)
        data["project"] = dict(
            project_to_dict(project, with_roof_areas=True),
            user={"id": str(project.user.id), "name": project.user.name, "email": project.user.email} if project.user else None,
            timeline_events=[timeline_event_to_dict(e) for e in timeline.list_events(db, project.id)],
        )
    return {"lead": data}


@router.post("/leads/{lead_id}/assign")
def lead_assign(
    lead_id: uuid.UUID,
    payload: LeadAssign,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _=Depends(sales_staff),
):
    lead = lead_service.get_lead(db, lead_id)
    queued = lead_service.assign_lead(db, lead, payload.assigned_to)
    db.commit()
    notifications.schedule_delivery(background_tasks, [queued])
    return {"message": "Lead erfolgreich zugewiesen", "lead": lead_to_dict(lead)}


@router.patch("/leads/{lead_id}/status")
def lead_status(
    lead_id: uuid.UUID,
    payload: LeadStatusUpdate,
    db: Session = Depends(get_db),
    _=Depends(sales_staff),
):
    lead = lead_service.get_lead(db, lead_id)
    lead_service.update_status(db, lead, payload.status)
    db.commit()
    return {"message": "Lead-Status erfolgreich aktualisiert", "lead": lead_to_dict(lead)}


@router.post("/leads/{lead_id}/notes")
def note_add(
    lead_id: uuid.UUID,
    payload: LeadNoteCreate,
    db: Session = Depends(get_db),
    user: User = Depends(sales_staff),
):
    lead = lead_service.get_lead(db, lead_id)
    note = lead_service.add_note(db, lead, user, payload.content)
    db.commit()
    return {"message": "Notiz erfolgreich hinzugefügt", "note": note_to_dict(note)}


@router.delete("/leads/{lead_id}/notes/{note_id}")
def note_delete(
    lead_id: uuid.UUID,
    note_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(sales_staff),
):
    lead_service.delete_note(db, lead_service.get_lead(db, lead_id), note_id)
    db.commit()
    return {"message": "Notiz erfolgreich gelöscht"}


@router.get("/projects")
def projects_index(db: Session = Depends(get_db), _=Depends(sales_staff)):
    rows = (
        project_service.list_projects(db)
        .options(
            joinedload(Project.user),
            selectinload(Project.roof_areas),
            selectinload(Project.timeline_events).joinedload(TimelineEvent.creator),
        )
        .all()
    )
    return [
        dict(
            project_to_dict(p, with_roof_areas=False),
            user_name=p.user.name if p.user else "N/A",
            roof_areas_count=len(p.roof_areas),
            created_at_display=display_time(p.created_at),
            timeline_events=[timeline_event_to_dict(e) for e in p.timeline_events],
        )
        for p in rows
    ]


@router.post("/projects/{project_id}/timeline")
def timeline_create(
    project_id: uuid.UUID,
    payload: TimelineEventCreate,
    db: Session = Depends(get_db),
    user: User = Depends(sales_staff),
):
    project = project_service.get_project(db, project_id)
    event = timeline.record_event(db, project, created_by=user.id, **payload.model_dump())
    db.commit()
    return {"message": "Timeline-Event erfolgreich erstellt", "event": timeline_event_to_dict(event)}


@router.post("/projects/{project_id}/status")
def project_status(
    project_id: uuid.UUID,
    payload: ProjectStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(sales_staff),
):
    project = project_service.get_project(db, project_id)
    project_service.change_status(db, project, payload.status, user, note=payload.note)
    db.commit()
    return {
        "message": "Projektstatus erfolgreich aktualisiert",
        "project": dict(
            project_to_dict(project),
            timeline_events=[timeline_event_to_dict(e) for e in timeline.list_events(db, project.id)],
        ),
    }
