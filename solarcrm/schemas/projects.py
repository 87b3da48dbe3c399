from typing import Optional, List, Literal
from pydantic import BaseModel, Field, field_validator

from ..services.timeline import EVENT_TYPES, OWNER_STATUSES, PROJECT_STATUSES


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ExclusionZoneIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    path: List[LatLng] = []


class RoofAreaIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    path: List[LatLng] = []
    panel_type: str = Field(min_length=1, max_length=100)
    tilt_angle: float
    orientation_angle: float
    panel_count: int = Field(default=0, ge=0)
    exclusion_zones: List[ExclusionZoneIn] = []


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    location_lat: float = Field(ge=-90, le=90)
    location_lng: float = Field(ge=-180, le=180)
    map_center: Optional[LatLng] = None
    zoom: int = Field(default=20, ge=1, le=22)
    roof_areas: List[RoofAreaIn] = []


class ProjectUpdate(BaseModel):
    # roof_areas=None keeps the existing areas; a list replaces them all
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    location_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    location_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    map_center: Optional[LatLng] = None
    zoom: Optional[int] = Field(default=None, ge=1, le=22)
    status: Optional[str] = None
    roof_areas: Optional[List[RoofAreaIn]] = None

    @field_validator("status")
    @classmethod
    def known_status(cls, v):
        if v is not None and v not in OWNER_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(OWNER_STATUSES)}")
        return v


class ProjectStatusUpdate(BaseModel):
    status: Literal[PROJECT_STATUSES]  # type: ignore[valid-type]
    note: Optional[str] = Field(default=None, max_length=500)


class TimelineEventCreate(BaseModel):
    event_type: Literal[EVENT_TYPES]  # type: ignore[valid-type]
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    icon: Optional[str] = Field(default=None, max_length=50)
