"""
Project timeline: append-only lifecycle events.

Project writes call into this module explicitly, inside the caller's
transaction; nothing here commits.
"""
import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import NotFoundError, UnknownStatusError
from ..models.models import Project, TimelineEvent


EVENT_TYPES = (
    "project_created",
    "status_changed",
    "appointment_scheduled",
    "document_uploaded",
    "quote_sent",
    "contract_signed",
    "installation_scheduled",
    "installation_completed",
    "custom",
)

# Lucide icon names
DEFAULT_ICONS = {
    "project_created": "Plus",
    "status_changed": "ArrowRight",
    "appointment_scheduled": "Calendar",
    "document_uploaded": "FileText",
    "quote_sent": "Mail",
    "contract_signed": "FileCheck",
    "installation_scheduled": "CalendarCheck",
    "installation_completed": "CheckCircle",
}
FALLBACK_ICON = "Circle"

PROJECT_STATUSES = (
    "draft",
    "planning",
    "quote_requested",
    "quote_sent",
    "contract_signed",
    "installation_scheduled",
    "in_installation",
    "completed",
    "cancelled",
)

# Statuses a customer may set on their own project; the rest belong to staff
OWNER_STATUSES = ("draft", "planning", "completed")

STATUS_LABELS = {
    "draft": "Entwurf",
    "planning": "In Planung",
    "quote_requested": "Angebot angefordert",
    "quote_sent": "Angebot versendet",
    "contract_signed": "Vertrag unterzeichnet",
    "installation_scheduled": "Installation geplant",
    "in_installation": "In Installation",
    "completed": "Abgeschlossen",
    "cancelled": "Abgebrochen",
}


def status_label(code: str) -> str:
    try:
        return STATUS_LABELS[code]
    except KeyError:
        raise UnknownStatusError(f"No label for project status '{code}'") from None


def event_icon(event: TimelineEvent) -> str:
    return event.icon or DEFAULT_ICONS.get(event.event_type, FALLBACK_ICON)


def record_event(
    db: Session,
    project: Project,
    event_type: str,
    title: str,
    description: Optional[str] = None,
    created_by: Optional[uuid.UUID] = None,
    icon: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
) -> TimelineEvent:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown timeline event type '{event_type}'")
    event = TimelineEvent(
        project_id=project.id,
        created_by=created_by,
        event_type=event_type,
        title=title,
        description=description,
        icon=icon,
        old_value=old_value,
        new_value=new_value,
        created_at=datetime.utcnow(),
    )
    db.add(event)
    db.flush()
    structlog.get_logger().info(
        "timeline_event_created",
        project_id=str(project.id),
        event_type=event_type,
        created_by=str(created_by) if created_by else None,
    )
    return event


def record_project_created(db: Session, project: Project) -> TimelineEvent:
    return record_event(
        db,
        project,
        "project_created",
        title="Projekt erstellt",
        description=f"Solar-Projekt '{project.name}' wurde erstellt",
        created_by=project.user_id,
    )


def record_status_changed(
    db: Session,
    project: Project,
    old_status: str,
    new_status: str,
    actor_id: Optional[uuid.UUID],
    note: Optional[str] = None,
) -> TimelineEvent:
    old_label = status_label(old_status)
    new_label = status_label(new_status)
    return record_event(
        db,
        project,
        "status_changed",
        title=f"Status geändert: {new_label}",
        description=note or f"Status von '{old_label}' zu '{new_label}' geändert",
        created_by=actor_id,
        old_value=old_status,
        new_value=new_status,
    )


def record_restored(db: Session, project: Project, actor_id: Optional[uuid.UUID]) -> TimelineEvent:
    return record_event(
        db,
        project,
        "custom",
        title="Projekt wiederhergestellt",
        description="Das Projekt wurde aus dem Papierkorb wiederhergestellt",
        created_by=actor_id,
    )


def list_events(db: Session, project_id: uuid.UUID):
    return (
        db.query(TimelineEvent)
        .filter(TimelineEvent.project_id == project_id)
        .order_by(TimelineEvent.created_at.desc())
        .all()
    )


def delete_event(db: Session, project: Project, event_id: uuid.UUID) -> None:
    event = db.query(TimelineEvent).filter(TimelineEvent.id == event_id).first()
    if not event or event.project_id != project.id:
        raise NotFoundError("Timeline event not found")
    db.delete(event)
    db.flush()
    structlog.get_logger().info("timeline_event_deleted", project_id=str(project.id), event_id=str(event_id))
