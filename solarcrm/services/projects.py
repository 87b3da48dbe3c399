"""
Project writes. Every successful write records its timeline events here,
inside the same transaction, before the caller commits.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session, selectinload

from ..errors import NotFoundError
from ..models.models import ExclusionZone, Project, RoofArea, User
from . import timeline


def _points(path) -> list:
    out = []
    for p in path or []:
        if hasattr(p, "model_dump"):
            p = p.model_dump()
        out.append({"lat": float(p["lat"]), "lng": float(p["lng"])})
    return out


def _as_dict(obj) -> Dict[str, Any]:
    return obj.model_dump() if hasattr(obj, "model_dump") else dict(obj)


def replace_roof_areas(db: Session, project: Project, roof_areas: List[Any]) -> int:
    """Swap all roof areas for the given ones; returns the new panel total."""
    project.roof_areas.clear()
    db.flush()
    total = 0
    for position, raw in enumerate(roof_areas):
        data = _as_dict(raw)
        area = RoofArea(
            position=position,
            name=data.get("name") or "Dachfläche",
            path=_points(data.get("path")),
            panel_type=data.get("panel_type") or "standard",
            tilt_angle=float(data.get("tilt_angle", 30)),
            orientation_angle=float(data.get("orientation_angle", 180)),
            panel_count=int(data.get("panel_count") or 0),
        )
        for zone_position, zone_raw in enumerate(data.get("exclusion_zones") or []):
            zone = _as_dict(zone_raw)
            area.exclusion_zones.append(ExclusionZone(
                position=zone_position,
                name=zone.get("name") or "Ausschlusszone",
                path=_points(zone.get("path")),
            ))
        project.roof_areas.append(area)
        total += area.panel_count
    project.total_panel_count = total
    db.flush()
    return total


def create_project(
    db: Session,
    owner: User,
    name: str,
    location_lat: float,
    location_lng: float,
    map_center: Optional[Dict[str, float]] = None,
    zoom: int = 20,
    roof_areas: Optional[List[Any]] = None,
) -> Project:
    project = Project(
        user_id=owner.id,
        name=name,
        location_lat=location_lat,
        location_lng=location_lng,
        map_center=map_center,
        zoom=zoom,
        total_panel_count=0,
        status="draft",
    )
    db.add(project)
    db.flush()
    if roof_areas:
        replace_roof_areas(db, project, roof_areas)
    timeline.record_project_created(db, project)
    structlog.get_logger().info("project_created", project_id=str(project.id), user_id=str(owner.id))
    return project


def update_project(
    db: Session,
    project: Project,
    changes: Dict[str, Any],
    actor: Optional[User],
    skip_timeline_event: bool = False,
) -> Project:
    """
    Apply field changes. A status that actually changes yields exactly one
    status_changed event unless skip_timeline_event is set, in which case the
    caller records its own.
    """
    old_status = project.status
    for field in ("name", "location_lat", "location_lng", "map_center", "zoom", "status"):
        if field in changes and changes[field] is not None:
            setattr(project, field, changes[field])
    if changes.get("roof_areas") is not None:
        replace_roof_areas(db, project, changes["roof_areas"])
    project.updated_at = datetime.utcnow()
    db.flush()

    if project.status != old_status and not skip_timeline_event:
        timeline.record_status_changed(db, project, old_status, project.status, actor.id if actor else None)
    return project


def change_status(db: Session, project: Project, new_status: str, actor: User, note: Optional[str] = None):
    """Status endpoint for staff: one event carrying the optional note."""
    old_status = project.status
    update_project(db, project, {"status": new_status}, actor, skip_timeline_event=True)
    return timeline.record_status_changed(db, project, old_status, new_status, actor.id, note=note)


def soft_delete(db: Session, project: Project) -> Project:
    project.deleted_at = datetime.utcnow()
    db.flush()
    return project


def restore(db: Session, project: Project, actor: Optional[User]) -> Project:
    if project.deleted_at is None:
        return project
    project.deleted_at = None
    db.flush()
    timeline.record_restored(db, project, actor.id if actor else None)
    return project


def force_delete(db: Session, project: Project) -> None:
    # Roof areas, zones and timeline rows go with the project
    project_id = project.id
    db.delete(project)
    db.flush()
    structlog.get_logger().info("project_force_deleted", project_id=str(project_id))


def get_project(db: Session, project_id: uuid.UUID, include_deleted: bool = False) -> Project:
    q = db.query(Project).options(
        selectinload(Project.roof_areas).selectinload(RoofArea.exclusion_zones),
    ).filter(Project.id == project_id)
    if not include_deleted:
        q = q.filter(Project.deleted_at.is_(None))
    project = q.first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def list_projects(db: Session, user_id: Optional[uuid.UUID] = None, deleted: Optional[bool] = False):
    """deleted=False: active only; True: trashed only; None: both."""
    q = db.query(Project)
    if user_id is not None:
        q = q.filter(Project.user_id == user_id)
    if deleted is True:
        q = q.filter(Project.deleted_at.isnot(None))
    elif deleted is False:
        q = q.filter(Project.deleted_at.is_(None))
    return q.order_by(Project.created_at.desc())
