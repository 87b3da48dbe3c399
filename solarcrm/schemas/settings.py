from typing import Optional
from pydantic import BaseModel, Field

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class CompanySettingsUpdate(BaseModel):
    company_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    primary_color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    secondary_color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    accent_color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    background_color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    text_color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    email_header_title: Optional[str] = Field(default=None, max_length=255)
    email_footer_text: Optional[str] = Field(default=None, max_length=1000)
    email_footer_contact: Optional[str] = Field(default=None, max_length=1000)
