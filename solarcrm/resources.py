"""
JSON shapes returned by the API and the sales/admin routes.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytz
from sqlalchemy import inspect

from .config import settings
from .models.models import ExclusionZone, Lead, LeadNote, Project, RoofArea, TimelineEvent, User
from .services import permissions
from .services.timeline import event_icon


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def display_time(dt: Optional[datetime]) -> Optional[str]:
    """Business-timezone rendering used by the staff screens (dd.mm.YYYY HH:MM)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        tz = pytz.timezone(settings.tz_display)
    except pytz.UnknownTimeZoneError:
        tz = pytz.utc
    return dt.astimezone(tz).strftime("%d.%m.%Y %H:%M")


def _loaded(obj, relation: str) -> bool:
    return relation not in inspect(obj).unloaded


def user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": str(user.id), "name": user.name, "email": user.email}


def user_to_dict(user: User, with_permissions: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "is_active": user.is_active,
        "email_verified_at": _iso(user.email_verified_at),
        "created_at": _iso(user.created_at),
        "roles": permissions.roles_of(user),
    }
    if with_permissions:
        data["permissions"] = sorted(permissions.permissions_of(user))
    return data


def lead_to_dict(lead: Lead) -> Dict[str, Any]:
    data = {
        "id": str(lead.id),
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "message": lead.message,
        "request_type": lead.request_type,
        "status": lead.status,
        "source": lead.source,
    }
    # Only present when the relation was loaded and points at someone
    if _loaded(lead, "assigned_salesperson") and lead.assigned_salesperson is not None:
        data["assigned_salesperson"] = user_summary(lead.assigned_salesperson)
    data["created_at"] = _iso(lead.created_at)
    data["updated_at"] = _iso(lead.updated_at)
    return data


def note_to_dict(note: LeadNote) -> Dict[str, Any]:
    return {
        "id": str(note.id),
        "content": note.content,
        "created_at": _iso(note.created_at),
        "created_at_display": display_time(note.created_at),
        "user": {"id": str(note.user.id), "name": note.user.name} if note.user else None,
    }


def lead_detail_to_dict(lead: Lead) -> Dict[str, Any]:
    """Sales view: resource plus project summary and notes."""
    data = lead_to_dict(lead)
    data["account_created"] = lead.account_created
    data["created_at_display"] = display_time(lead.created_at)
    data["project"] = (
        {"id": str(lead.project.id), "name": lead.project.name, "status": lead.project.status}
        if lead.project else None
    )
    data["notes"] = [note_to_dict(n) for n in lead.notes]
    data["notes_count"] = len(lead.notes)
    return data


def exclusion_zone_to_dict(zone: ExclusionZone) -> Dict[str, Any]:
    return {"id": str(zone.id), "name": zone.name, "path": zone.path or []}


def roof_area_to_dict(area: RoofArea) -> Dict[str, Any]:
    data = {
        "id": str(area.id),
        "name": area.name,
        "path": area.path or [],
        "panel_type": area.panel_type,
        "tilt_angle": area.tilt_angle,
        "orientation_angle": area.orientation_angle,
        "panel_count": area.panel_count,
    }
    if _loaded(area, "exclusion_zones"):
        data["exclusion_zones"] = [exclusion_zone_to_dict(z) for z in area.exclusion_zones]
    return data


def project_to_dict(project: Project, with_roof_areas: Optional[bool] = None) -> Dict[str, Any]:
    data = {
        "id": str(project.id),
        "name": project.name,
        "location_lat": project.location_lat,
        "location_lng": project.location_lng,
        "map_center": project.map_center,
        "zoom": project.zoom,
        "total_panel_count": project.total_panel_count,
        "status": project.status,
    }
    if with_roof_areas is None:
        with_roof_areas = _loaded(project, "roof_areas")
    if with_roof_areas:
        data["roof_areas"] = [roof_area_to_dict(a) for a in project.roof_areas]
    data["created_at"] = _iso(project.created_at)
    data["updated_at"] = _iso(project.updated_at)
    return data


def timeline_event_to_dict(event: TimelineEvent) -> Dict[str, Any]:
    return {
        "id": str(event.id),
        "event_type": event.event_type,
        "title": event.title,
        "description": event.description,
        "icon": event_icon(event),
        "old_value": event.old_value,
        "new_value": event.new_value,
        "created_at": _iso(event.created_at),
        "created_at_display": display_time(event.created_at),
        "creator": {"id": str(event.creator.id), "name": event.creator.name} if event.creator else None,
    }
