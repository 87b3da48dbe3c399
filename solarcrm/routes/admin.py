"""
Admin area (browser routes): dashboard, users, projects, timeline cleanup,
e-mail templates and company branding.
"""
import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from ..auth.roles import ADMIN_ONLY
from ..auth.security import require_roles
from ..db import get_db
from ..models.models import Lead, Project, Role, User
from ..resources import display_time, lead_to_dict, project_to_dict, user_to_dict
from ..schemas.auth import UserCreate, UserUpdate
from ..schemas.emails import EmailTemplatePreview, EmailTemplateUpdate
from ..schemas.settings import CompanySettingsUpdate
from ..services import company_settings, email_templates, timeline
from ..services import projects as project_service
from ..services import users as user_service


router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_roles(*ADMIN_ONLY, web=True)


def _project_row(p: Project) -> dict:
    return dict(
        project_to_dict(p, with_roof_areas=False),
        user_id=str(p.user_id),
        user_name=p.user.name if p.user else None,
        user_email=p.user.email if p.user else None,
        roof_areas_count=len(p.roof_areas),
        deleted_at=p.deleted_at.isoformat() if p.deleted_at else None,
        created_at_display=display_time(p.created_at),
    )


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), _=Depends(admin_only)):
    active = db.query(Project).filter(Project.deleted_at.is_(None))
    recent_projects = (
        active.options(joinedload(Project.user), selectinload(Project.roof_areas))
        .order_by(Project.created_at.desc())
        .limit(10)
        .all()
    )
    recent_leads = db.query(Lead).order_by(Lead.created_at.desc()).limit(10).all()
    by_status = dict(
        db.query(Project.status, func.count(Project.id))
        .filter(Project.deleted_at.is_(None))
        .group_by(Project.status)
        .all()
    )
    return {
        "statistics": {
            "total_users": db.query(func.count(User.id)).scalar(),
            "total_projects": active.count(),
            "total_leads": db.query(func.count(Lead.id)).scalar(),
            "total_panels": db.query(func.coalesce(func.sum(Project.total_panel_count), 0))
            .filter(Project.deleted_at.is_(None))
            .scalar(),
        },
        "recent_projects": [_project_row(p) for p in recent_projects],
        "recent_leads": [lead_to_dict(l) for l in recent_leads],
        "projects_by_status": by_status,
    }


# --- users ----------------------------------------------------------------

@router.get("/users")
def users_index(db: Session = Depends(get_db), _=Depends(admin_only)):
    project_counts = dict(
        db.query(Project.user_id, func.count(Project.id)).filter(Project.deleted_at.is_(None)).group_by(Project.user_id).all()
    )
    users = db.query(User).options(selectinload(User.roles)).order_by(User.created_at.desc()).all()
    return {
        "users": [
            dict(user_to_dict(u), is_admin="admin" in {r.name for r in u.roles}, projects_count=project_counts.get(u.id, 0))
            for u in users
        ],
        "roles": [r.name for r in db.query(Role).order_by(Role.name).all()],
    }


@router.post("/users", status_code=201)
def users_store(payload: UserCreate, db: Session = Depends(get_db), _=Depends(admin_only)):
    user = user_service.create_user(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        phone=payload.phone,
    )
    db.commit()
    return user_to_dict(user)


@router.patch("/users/{user_id}")
def users_update(user_id: uuid.UUID, payload: UserUpdate, db: Session = Depends(get_db), _=Depends(admin_only)):
    user = user_service.get_user(db, user_id)
    user_service.update_user(db, user, payload.model_dump(exclude_unset=True))
    db.commit()
    return user_to_dict(user)


@router.post("/users/{user_id}/verify")
def users_verify(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(admin_only)):
    user = user_service.verify_email(db, user_service.get_user(db, user_id))
    db.commit()
    return user_to_dict(user)


@router.delete("/users/{user_id}")
def users_destroy(user_id: uuid.UUID, db: Session = Depends(get_db), actor: User = Depends(admin_only)):
    user_service.delete_user(db, user_service.get_user(db, user_id), actor)
    db.commit()
    return {"message": "Benutzer erfolgreich gelöscht."}


# --- projects -------------------------------------------------------------

@router.get("/projects")
def projects_index(trashed: Optional[bool] = False, db: Session = Depends(get_db), _=Depends(admin_only)):
    """trashed=false: active, true: soft-deleted only."""
    rows = (
        project_service.list_projects(db, deleted=bool(trashed))
        .options(joinedload(Project.user), selectinload(Project.roof_areas))
        .all()
    )
    return [_project_row(p) for p in rows]


@router.get("/projects/{project_id}")
def projects_show(project_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(admin_only)):
    project = project_service.get_project(db, project_id, include_deleted=True)
    return dict(
        project_to_dict(project, with_roof_areas=True),
        user={"id": str(project.user.id), "name": project.user.name, "email": project.user.email},
        deleted_at=project.deleted_at.isoformat() if project.deleted_at else None,
    )


@router.delete("/projects/{project_id}")
def projects_destroy(project_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(admin_only)):
    project_service.soft_delete(db, project_service.get_project(db, project_id))
    db.commit()
    return {"message": "Projekt erfolgreich gelöscht."}


@router.post("/projects/{project_id}/restore")
def projects_restore(project_id: uuid.UUID, db: Session = Depends(get_db), actor: User = Depends(admin_only)):
    project = project_service.get_project(db, project_id, include_deleted=True)
    project_service.restore(db, project, actor)
    db.commit()
    return project_to_dict(project)


@router.delete("/projects/{project_id}/force")
def projects_force_destroy(project_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(admin_only)):
    project_service.force_delete(db, project_service.get_project(db, project_id, include_deleted=True))
    db.commit()
    return {"message": "Projekt endgültig gelöscht."}


@router.delete("/projects/{project_id}/timeline/{event_id}")
def timeline_destroy(
    project_id: uuid.UUID,
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(admin_only),
):
    project = project_service.get_project(db, project_id, include_deleted=True)
    timeline.delete_event(db, project, event_id)
    db.commit()
    return {"message": "Timeline-Event erfolgreich gelöscht"}


# --- e-mail templates -----------------------------------------------------

def _template_to_dict(t) -> dict:
    return {
        "id": str(t.id),
        "key": t.key,
        "name": t.name,
        "subject": t.subject,
        "content": t.content,
        "variables": t.variables or [],
        "description": t.description,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


@router.get("/email-templates")
def templates_index(db: Session = Depends(get_db), _=Depends(admin_only)):
    return [_template_to_dict(t) for t in email_templates.list_templates(db)]


@router.get("/email-templates/{key}")
def templates_show(key: str, db: Session = Depends(get_db), _=Depends(admin_only)):
    return _template_to_dict(email_templates.get_or_404(db, key))


@router.put("/email-templates/{key}")
def templates_update(key: str, payload: EmailTemplateUpdate, db: Session = Depends(get_db), _=Depends(admin_only)):
    template = email_templates.update_template(db, key, payload.subject, payload.content)
    db.commit()
    return _template_to_dict(template)


@router.post("/email-templates/{key}/preview")
def templates_preview(key: str, payload: EmailTemplatePreview, db: Session = Depends(get_db), _=Depends(admin_only)):
    rendered = email_templates.preview(db, key, subject=payload.subject, content=payload.content, data=payload.data)
    return {"subject": rendered.subject, "html": rendered.html_body}


# --- company settings -----------------------------------------------------

@router.get("/settings")
def settings_show(db: Session = Depends(get_db), _=Depends(admin_only)):
    return company_settings.get_all(db)


@router.put("/settings")
def settings_update(payload: CompanySettingsUpdate, db: Session = Depends(get_db), _=Depends(admin_only)):
    values = company_settings.update_many(db, payload.model_dump())
    db.commit()
    return values
