import pytest

from solarcrm.config import settings
from solarcrm.errors import NotFoundError
from solarcrm.models.models import EmailTemplate, Notification
from solarcrm.services import company_settings, email_templates, notifications


@pytest.fixture
def smtp(monkeypatch):
    """Configure mail delivery and capture what would have been sent."""
    monkeypatch.setattr(settings, "enable_email", True)
    monkeypatch.setattr(settings, "smtp_host", "smtp.example.com")
    monkeypatch.setattr(settings, "mail_from", "noreply@example.com")
    sent = []

    def _send(to, subject, html_body):
        sent.append({"to": to, "subject": subject, "html": html_body})

    monkeypatch.setattr(notifications, "send_email", _send)
    return sent


def test_render_string_nested_and_missing_values():
    out = email_templates.render_string(
        "Hallo {{ salesperson.name }}, {{lead.phone}}|{{lead.account_created}}|{{unknown}}|{{lead}}",
        {"salesperson": {"name": "Erika"}, "lead": {"phone": None, "account_created": True}},
    )
    assert out == "Hallo Erika, |Ja|{{unknown}}|{{lead}}"


def test_render_prefers_database_template(db):
    row = db.query(EmailTemplate).filter(EmailTemplate.key == "welcome_user").one()
    row.subject = "Hi {{name}} von {{company_name}}"
    db.commit()

    rendered = email_templates.render(db, "welcome_user", {"name": "Max"})
    assert rendered.source == "database"
    assert rendered.subject == "Hi Max von Solar Lead Generator"


def test_render_falls_back_to_default(db):
    db.query(EmailTemplate).filter(EmailTemplate.key == "lead_assigned").delete()
    db.commit()

    rendered = email_templates.render(
        db,
        "lead_assigned",
        {"salesperson": {"name": "Erika"}, "lead": {"name": "Max Mustermann", "phone": None}},
    )
    assert rendered.source == "default"
    assert rendered.subject == "Neuer Lead zugewiesen - Max Mustermann"
    assert "Hallo Erika" in rendered.html_body
    assert "#EAB308" in rendered.html_body


def test_render_unknown_key(db):
    with pytest.raises(NotFoundError):
        email_templates.render(db, "newsletter", {})


def test_branding_follows_company_settings(db):
    company_settings.set_value(db, "company_name", "Sonnenkraft")
    db.commit()
    rendered = email_templates.render(db, "password_reset", {"reset_url": "https://x/r/1", "expire_minutes": 30})
    assert rendered.subject == "Passwort zurücksetzen - Sonnenkraft"
    assert "30 Minuten" in rendered.html_body


def test_seed_templates_keeps_edits(db):
    email_templates.update_template(db, "welcome_user", "Eigener Betreff", "<p>{{name}}</p>")
    db.commit()
    assert email_templates.seed_templates(db) == 0
    assert email_templates.get_template(db, "welcome_user").subject == "Eigener Betreff"


def test_admin_template_endpoints(client, db, admin, auth):
    headers = auth(admin)
    keys = {t["key"] for t in client.get("/admin/email-templates", headers=headers).json()}
    assert keys == {"welcome_user", "lead_assigned", "password_reset"}

    preview = client.post(
        "/admin/email-templates/lead_assigned/preview",
        json={"subject": "Lead: {{lead.name}}"},
        headers=headers,
    )
    assert preview.status_code == 200
    assert preview.json()["subject"] == "Lead: Max Mustermann"
    # preview never persists
    db.expire_all()
    assert email_templates.get_template(db, "lead_assigned").subject == "Neuer Lead zugewiesen - {{lead.name}}"

    updated = client.put(
        "/admin/email-templates/lead_assigned",
        json={"subject": "Neuer Lead: {{lead.name}}", "content": "<p>{{lead.email}}</p>"},
        headers=headers,
    )
    assert updated.status_code == 200
    assert client.get("/admin/email-templates/lead_assigned", headers=headers).json()["subject"] == "Neuer Lead: {{lead.name}}"

    assert client.get("/admin/email-templates/newsletter", headers=headers).status_code == 404


def test_deliver_marks_skipped_without_smtp(db):
    n = notifications.queue_email(db, "welcome_user", "a@example.com", {"name": "A"})
    db.commit()
    assert notifications.deliver_pending(db) == {"sent": 0, "failed": 0, "skipped": 1}
    assert n.status == "skipped"
    assert n.attempts == 0
    # skipped rows are not picked up again
    assert notifications.deliver_pending(db) == {"sent": 0, "failed": 0, "skipped": 0}


def test_deliver_pending_sends_rendered_mail(db, smtp):
    n = notifications.queue_email(
        db,
        "lead_assigned",
        "sam@example.com",
        {"salesperson": {"name": "Sam"}, "lead": {"name": "Jane Roof"}},
    )
    db.commit()

    assert notifications.deliver_pending(db) == {"sent": 1, "failed": 0, "skipped": 0}
    assert len(smtp) == 1
    assert smtp[0]["to"] == "sam@example.com"
    assert smtp[0]["subject"] == "Neuer Lead zugewiesen - Jane Roof"
    assert "Hallo Sam" in smtp[0]["html"]
    assert n.status == "sent"
    assert n.sent_at is not None
    assert n.subject == "Neuer Lead zugewiesen - Jane Roof"


def test_failed_delivery_is_retried_until_limit(db, smtp, monkeypatch):
    def _boom(to, subject, html_body):
        raise OSError("connection refused")

    monkeypatch.setattr(notifications, "send_email", _boom)
    monkeypatch.setattr(settings, "notification_max_attempts", 2)
    n = notifications.queue_email(db, "welcome_user", "a@example.com", {"name": "A"})
    db.commit()

    assert notifications.deliver_pending(db)["failed"] == 1
    assert n.status == "failed"
    assert n.attempts == 1
    assert n.error_message == "connection refused"

    assert notifications.deliver_pending(db)["failed"] == 1
    assert n.attempts == 2
    # limit reached
    assert notifications.deliver_pending(db) == {"sent": 0, "failed": 0, "skipped": 0}


def test_failure_does_not_break_triggering_request(client, db, admin, sales, auth, monkeypatch, smtp):
    def _boom(to, subject, html_body):
        raise OSError("smtp down")

    monkeypatch.setattr(notifications, "send_email", _boom)
    lead_id = client.post(
        "/api/leads", json={"name": "Jane", "email": "jane@example.com", "request_type": "quote"}
    ).json()["id"]

    res = client.post(f"/api/leads/{lead_id}/assign", json={"assigned_to": str(sales.id)}, headers=auth(admin))
    assert res.status_code == 200
    row = db.query(Notification).one()
    assert row.status == "failed"
    assert row.attempts == 1


def test_schedule_delivery_ignores_empty():
    notifications.schedule_delivery(None, [None])


def test_html_body_escapes_values_but_subject_stays_plain(db):
    rendered = email_templates.render(
        db,
        "lead_assigned",
        {
            "salesperson": {"name": "Sam"},
            "lead": {"name": "<b>Max</b>", "message": "<script>evil()</script>"},
        },
    )
    assert "&lt;script&gt;evil()&lt;/script&gt;" in rendered.html_body
    assert "<script>evil" not in rendered.html_body
    assert "<h2>&lt;b&gt;Max&lt;/b&gt;</h2>" in rendered.html_body
    assert rendered.subject == "Neuer Lead zugewiesen - <b>Max</b>"


def test_render_string_escapes_only_on_request():
    context = {"name": "Tom & Jerry"}
    assert email_templates.render_string("{{name}}", context) == "Tom & Jerry"
    assert email_templates.render_string("<p>{{name}}</p>", context, escape=True) == "<p>Tom &amp; Jerry</p>"


def test_long_subject_is_stored_truncated_and_sent_in_full(db, smtp):
    long_name = "M" * 255
    n = notifications.queue_email(
        db,
        "lead_assigned",
        "sam@example.com",
        {"salesperson": {"name": "Sam"}, "lead": {"name": long_name}},
    )
    db.commit()

    assert notifications.deliver_pending(db) == {"sent": 1, "failed": 0, "skipped": 0}
    assert smtp[0]["subject"] == "Neuer Lead zugewiesen - " + long_name
    assert n.status == "sent"
    assert len(n.subject) == notifications.SUBJECT_LENGTH == 255
    assert smtp[0]["subject"].startswith(n.subject)
    # sent rows are not delivered again
    assert notifications.deliver_pending(db) == {"sent": 0, "failed": 0, "skipped": 0}
    assert len(smtp) == 1
