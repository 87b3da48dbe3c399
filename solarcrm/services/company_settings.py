"""
Company branding settings (key/value rows) with a process-wide cache.
"""
import threading
from typing import Dict, Optional

import structlog
from sqlalchemy import event
from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal
from ..models.models import CompanySetting


DEFAULTS: Dict[str, str] = {
    "company_name": "Solar Lead Generator",
    "primary_color": "#EAB308",
    "secondary_color": "#1F2937",
    "accent_color": "#3B82F6",
    "background_color": "#111827",
    "text_color": "#FFFFFF",
    "email_header_title": "Willkommen",
    "email_footer_text": "Ihr Partner für nachhaltige Energie",
    "email_footer_contact": "",
}

_lock = threading.Lock()
_cache: Optional[Dict[str, Optional[str]]] = None


def clear_cache() -> None:
    global _cache
    with _lock:
        _cache = None


_DIRTY = "company_settings_cache_dirty"


def _touched(db: Session) -> None:
    # Cleared at flush for reads in this session and again once the
    # outermost transaction commits or rolls back
    db.info[_DIRTY] = True
    clear_cache()


@event.listens_for(SessionLocal, "after_transaction_end")
def _clear_after_transaction(session, transaction):
    if transaction.parent is None and session.info.pop(_DIRTY, False):
        clear_cache()


def get_all(db: Session) -> Dict[str, Optional[str]]:
    """Stored values over defaults."""
    global _cache
    with _lock:
        if _cache is not None:
            return dict(_cache)
    values: Dict[str, Optional[str]] = dict(DEFAULTS)
    for row in db.query(CompanySetting).all():
        values[row.key] = row.value
    with _lock:
        _cache = values
    return dict(values)


def get(db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
    value = get_all(db).get(key)
    return default if value is None else value


def set_value(db: Session, key: str, value: Optional[str], type_: str = "string") -> CompanySetting:
    row = db.query(CompanySetting).filter(CompanySetting.key == key).first()
    if row:
        row.value = value
        row.type = type_
    else:
        row = CompanySetting(key=key, value=value, type=type_)
        db.add(row)
    db.flush()
    _touched(db)
    return row


def update_many(db: Session, values: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
    # None means "leave as is"
    changed = []
    for key, value in values.items():
        if value is None:
            continue
        set_value(db, key, value, "text" if key.startswith("email_") else "string")
        changed.append(key)
    _touched(db)
    structlog.get_logger().info("company_settings_updated", keys=changed)
    return get_all(db)


def branding_context(db: Session) -> Dict[str, str]:
    """Variables merged into every e-mail template context."""
    values = get_all(db)
    return {
        "company_name": values.get("company_name") or DEFAULTS["company_name"],
        "primary_color": values.get("primary_color") or DEFAULTS["primary_color"],
        "secondary_color": values.get("secondary_color") or DEFAULTS["secondary_color"],
        "email_header_title": values.get("email_header_title") or "",
        "email_footer_text": values.get("email_footer_text") or "",
        "email_footer_contact": values.get("email_footer_contact") or "",
        "app_url": settings.public_base_url.rstrip("/"),
    }
