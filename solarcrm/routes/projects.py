import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, selectinload

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Project, RoofArea, User
from ..resources import project_to_dict
from ..schemas.projects import ProjectCreate, ProjectUpdate
from ..services import projects as project_service


router = APIRouter(prefix="/api/projects", tags=["projects"])


def _owned_project(db: Session, project_id: uuid.UUID, user: User) -> Project:
    project = project_service.get_project(db, project_id)
    if project.user_id != user.id:
        raise HTTPException(status_code=403, detail="Unauthorized access to project")
    return project


@router.get("")
def list_projects(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = (
        project_service.list_projects(db, user_id=user.id)
        .options(selectinload(Project.roof_areas).selectinload(RoofArea.exclusion_zones))
        .all()
    )
    return [project_to_dict(p) for p in rows]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = payload.model_dump()
    project = project_service.create_project(db, user, **data)
    db.commit()
    return project_to_dict(project, with_roof_areas=True)


@router.get("/{project_id}")
def get_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return project_to_dict(_owned_project(db, project_id, user), with_roof_areas=True)


@router.patch("/{project_id}")
def update_project(
    project_id: uuid.UUID,
    payload: ProjectUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = _owned_project(db, project_id, user)
    project_service.update_project(db, project, payload.model_dump(exclude_unset=True), actor=user)
    db.commit()
    return project_to_dict(project, with_roof_areas=True)


@router.delete("/{project_id}")
def delete_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project_service.soft_delete(db, _owned_project(db, project_id, user))
    db.commit()
    return {"message": "Project deleted successfully"}
