import uuid
from typing import Optional, List, Literal
from pydantic import BaseModel, EmailStr, Field, field_validator
from slugify import slugify

from .projects import LatLng, RoofAreaIn
from ..services.leads import LEAD_STATUSES


REQUEST_TYPES = ("quote", "consultation")


class LeadCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=50)
    message: Optional[str] = Field(default=None, max_length=2000)
    request_type: Literal[REQUEST_TYPES]  # type: ignore[valid-type]
    source: Optional[str] = Field(default=None, max_length=100)

    @field_validator('name', 'phone', 'message', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('source')
    @classmethod
    def normalise_source(cls, v):
        if v is None:
            return None
        return slugify(v, separator="_") or None


class LandingProjectData(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    location_lat: float = Field(default=0, ge=-90, le=90)
    location_lng: float = Field(default=0, ge=-180, le=180)
    map_center: Optional[LatLng] = None
    zoom: int = Field(default=18, ge=1, le=22)
    roof_areas: List[RoofAreaIn] = []


class LandingLeadCreate(LeadCreate):
    message: Optional[str] = Field(default=None, max_length=1000)
    create_account: bool = False
    project_data: Optional[LandingProjectData] = None


class LeadUpdate(BaseModel):
    status: Optional[Literal[LEAD_STATUSES]] = None  # type: ignore[valid-type]
    message: Optional[str] = Field(default=None, max_length=2000)


class LeadStatusUpdate(BaseModel):
    status: Literal[LEAD_STATUSES]  # type: ignore[valid-type]


class LeadAssign(BaseModel):
    # None unassigns (web route only)
    assigned_to: Optional[uuid.UUID] = None


class LeadNoteCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
