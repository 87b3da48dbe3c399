from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..resources import lead_to_dict, project_to_dict
from ..schemas.leads import LandingLeadCreate
from ..services import company_settings, notifications
from ..services import leads as lead_service


router = APIRouter(prefix="/landing", tags=["landing"])


@router.get("")
def landing_config(db: Session = Depends(get_db)):
    """Branding the public planner needs to render."""
    values = company_settings.get_all(db)
    return {"company_name": values.get("company_name"), "company_settings": values}


@router.post("/leads", status_code=status.HTTP_201_CREATED)
def submit_lead(payload: LandingLeadCreate, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    data = payload.model_dump()
    try:
        lead, user, welcome = lead_service.submit_landing_lead(db, data)
        db.commit()
    except Exception:
        db.rollback()
        raise
    notifications.schedule_delivery(background_tasks, [welcome])
    return {
        "lead": lead_to_dict(lead),
        "account_created": lead.account_created,
        "project": project_to_dict(lead.project, with_roof_areas=False) if lead.project_id and lead.project else None,
    }
