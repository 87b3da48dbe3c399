"""
E-mail templates.

A template is looked up by key in the database first; when no row exists the
compiled-in default with the same key is used. Both go through render_string,
which replaces {{var}} and nested {{a.b}} placeholders from the data context.
Placeholders with no value in the context are left untouched. Values going
into the HTML body are escaped; subjects are plain text.
"""
import html
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.models import EmailTemplate
from . import company_settings


_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}")

BRANDING_VARIABLES = ["company_name", "primary_color", "secondary_color", "app_url"]


@dataclass(frozen=True)
class TemplateDefault:
    key: str
    name: str
    subject: str
    content: str
    variables: List[str]
    description: str


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html_body: str
    source: str  # "database" or "default"


_BASE_STYLE = """
    <style>
        body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f3f4f6; }
        .header { background-color: {{primary_color}}; color: white; padding: 30px; text-align: center; }
        .content { background-color: #f9fafb; padding: 30px; }
        .button { display: inline-block; padding: 12px 24px; background-color: {{primary_color}}; color: white !important; text-decoration: none; border-radius: 6px; }
        .footer { background-color: {{secondary_color}}; color: #9ca3af; padding: 30px; text-align: center; font-size: 14px; }
    </style>"""

_FOOTER = """
    <div class="footer">
        <p><strong>{{company_name}}</strong></p>
        <p>{{email_footer_text}}</p>
        <p style="font-size: 12px;">Diese E-Mail wurde automatisch generiert.</p>
    </div>"""


DEFAULT_TEMPLATES: Dict[str, TemplateDefault] = {
    "welcome_user": TemplateDefault(
        key="welcome_user",
        name="Willkommens-E-Mail",
        subject="Willkommen bei {{company_name}} - Ihre Solar-Planung",
        content=f"""<!DOCTYPE html>
<html lang="de">
<head><meta charset="UTF-8">{_BASE_STYLE}
</head>
<body>
    <div class="header"><h1>Willkommen bei {{{{company_name}}}}</h1></div>
    <div class="content">
        <p>Hallo {{{{name}}}},</p>
        <p>vielen Dank für Ihr Interesse! Ihr Benutzerkonto wurde angelegt und Ihr Projekt "<strong>{{{{project_name}}}}</strong>" gespeichert.</p>
        <p><strong>E-Mail:</strong> {{{{email}}}}<br><strong>Passwort:</strong> {{{{password}}}}</p>
        <p>Bitte ändern Sie Ihr Passwort nach dem ersten Login.</p>
        <p><a href="{{{{app_url}}}}/login" class="button">Jetzt anmelden</a></p>
        <p>Mit freundlichen Grüßen,<br>Ihr Team von {{{{company_name}}}}</p>
    </div>{_FOOTER}
</body>
</html>""",
        variables=["name", "email", "password", "project_name"] + BRANDING_VARIABLES,
        description="E-Mail an neue Benutzer nach der Registrierung über die Landingpage",
    ),
    "lead_assigned": TemplateDefault(
        key="lead_assigned",
        name="Lead zugewiesen",
        subject="Neuer Lead zugewiesen - {{lead.name}}",
        content=f"""<!DOCTYPE html>
<html lang="de">
<head><meta charset="UTF-8">{_BASE_STYLE}
</head>
<body>
    <div class="header"><h1>Neuer Lead zugewiesen</h1></div>
    <div class="content">
        <p>Hallo {{{{salesperson.name}}}},</p>
        <p>Ihnen wurde ein neuer Lead zugewiesen. Bitte nehmen Sie zeitnah Kontakt auf.</p>
        <h2>{{{{lead.name}}}}</h2>
        <p><strong>E-Mail:</strong> <a href="mailto:{{{{lead.email}}}}">{{{{lead.email}}}}</a></p>
        <p><strong>Telefon:</strong> {{{{lead.phone}}}}</p>
        <p><strong>Anfrage-Typ:</strong> {{{{lead.request_type}}}}</p>
        <p><strong>Nachricht:</strong> {{{{lead.message}}}}</p>
        <p><strong>Quelle:</strong> {{{{lead.source}}}}</p>
        <p><a href="{{{{app_url}}}}/sales/leads" class="button">Lead im CRM öffnen</a></p>
    </div>{_FOOTER}
</body>
</html>""",
        variables=[
            "salesperson.name", "salesperson.email",
            "lead.name", "lead.email", "lead.phone", "lead.request_type",
            "lead.message", "lead.source", "lead.account_created",
        ] + BRANDING_VARIABLES,
        description="E-Mail an Vertriebsmitarbeiter, wenn ihnen ein Lead zugewiesen wird",
    ),
    "password_reset": TemplateDefault(
        key="password_reset",
        name="Passwort zurücksetzen",
        subject="Passwort zurücksetzen - {{company_name}}",
        content=f"""<!DOCTYPE html>
<html lang="de">
<head><meta charset="UTF-8">{_BASE_STYLE}
</head>
<body>
    <div class="header"><h1>Passwort zurücksetzen</h1></div>
    <div class="content">
        <p>Sie erhalten diese E-Mail, weil für Ihr Konto eine Passwort-Zurücksetzung angefordert wurde.</p>
        <p><a href="{{{{reset_url}}}}" class="button">Passwort zurücksetzen</a></p>
        <p>Dieser Link läuft in {{{{expire_minutes}}}} Minuten ab.</p>
        <p>Falls Sie keine Zurücksetzung angefordert haben, ignorieren Sie diese E-Mail bitte.</p>
    </div>{_FOOTER}
</body>
</html>""",
        variables=["reset_url", "expire_minutes"] + BRANDING_VARIABLES,
        description="E-Mail mit dem Link zum Zurücksetzen des Passworts",
    ),
}

SAMPLE_DATA: Dict[str, Dict[str, Any]] = {
    "welcome_user": {
        "name": "Max Mustermann",
        "email": "max@example.com",
        "password": "Beispiel123!",
        "project_name": "Einfamilienhaus Süddach",
    },
    "lead_assigned": {
        "salesperson": {"name": "Erika Vertrieb", "email": "erika@example.com"},
        "lead": {
            "name": "Max Mustermann",
            "email": "max@example.com",
            "phone": "+49 170 1234567",
            "request_type": "quote",
            "message": "Ich interessiere mich für eine PV-Anlage.",
            "source": "website",
            "account_created": False,
        },
    },
    "password_reset": {
        "reset_url": "https://example.com/reset-password/beispiel-token",
        "expire_minutes": 60,
    },
}


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Ja" if value else "Nein"
    return str(value)


def _lookup(context: Dict[str, Any], dotted: str):
    current: Any = context
    for part in dotted.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            raise KeyError(dotted)
    if isinstance(current, (dict, list)):
        raise KeyError(dotted)
    return current


def render_string(template: str, context: Dict[str, Any], escape: bool = False) -> str:
    def _sub(match):
        try:
            value = _format(_lookup(context, match.group(1)))
        except KeyError:
            return match.group(0)
        return html.escape(value) if escape else value

    return _PLACEHOLDER.sub(_sub, template)


def get_template(db: Session, key: str) -> Optional[EmailTemplate]:
    return db.query(EmailTemplate).filter(EmailTemplate.key == key).first()


def _context(db: Session, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    context: Dict[str, Any] = company_settings.branding_context(db)
    context.update(data or {})
    return context


def render(db: Session, key: str, data: Optional[Dict[str, Any]] = None) -> RenderedEmail:
    """Resolve the template for a key and substitute the data context."""
    context = _context(db, data)
    stored = get_template(db, key)
    if stored:
        subject, content, source = stored.subject, stored.content, "database"
    elif key in DEFAULT_TEMPLATES:
        default = DEFAULT_TEMPLATES[key]
        subject, content, source = default.subject, default.content, "default"
        structlog.get_logger().info("email_template_fallback", template_key=key)
    else:
        raise NotFoundError(f"Email template '{key}' not found")
    return RenderedEmail(
        subject=render_string(subject, context),
        html_body=render_string(content, context, escape=True),
        source=source,
    )


def preview(
    db: Session,
    key: str,
    subject: Optional[str] = None,
    content: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> RenderedEmail:
    """Render with sample data and optional unsaved edits; nothing is persisted."""
    current = get_template(db, key)
    default = DEFAULT_TEMPLATES.get(key)
    if not current and not default:
        raise NotFoundError(f"Email template '{key}' not found")
    base = current or default
    context = _context(db, SAMPLE_DATA.get(key, {}))
    context.update(data or {})
    return RenderedEmail(
        subject=render_string(subject if subject is not None else base.subject, context),
        html_body=render_string(content if content is not None else base.content, context, escape=True),
        source="preview",
    )


def list_templates(db: Session) -> List[EmailTemplate]:
    return db.query(EmailTemplate).order_by(EmailTemplate.name).all()


def get_or_404(db: Session, key: str) -> EmailTemplate:
    template = get_template(db, key)
    if not template:
        raise NotFoundError(f"Email template '{key}' not found")
    return template


def update_template(db: Session, key: str, subject: str, content: str) -> EmailTemplate:
    template = get_template(db, key)
    if not template:
        # Editing a key that only exists as a default materialises it
        default = DEFAULT_TEMPLATES.get(key)
        if not default:
            raise NotFoundError(f"Email template '{key}' not found")
        template = EmailTemplate(
            key=key,
            name=default.name,
            variables=list(default.variables),
            description=default.description,
        )
        db.add(template)
    template.subject = subject
    template.content = content
    template.updated_at = datetime.utcnow()
    db.flush()
    structlog.get_logger().info("email_template_updated", template_key=key)
    return template


def seed_templates(db: Session) -> int:
    """Insert missing default templates; existing rows are never overwritten."""
    created = 0
    for key, default in DEFAULT_TEMPLATES.items():
        if get_template(db, key):
            continue
        db.add(EmailTemplate(
            key=key,
            name=default.name,
            subject=default.subject,
            content=default.content,
            variables=list(default.variables),
            description=default.description,
        ))
        created += 1
    db.flush()
    return created
