from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class EmailTemplateUpdate(BaseModel):
    subject: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)


class EmailTemplatePreview(BaseModel):
    # Unsaved edits to preview; falls back to the stored template
    subject: Optional[str] = None
    content: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
