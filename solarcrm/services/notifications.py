"""
Outbound e-mail queue.

Triggering actions insert a pending Notification row in their own
transaction and return. Delivery happens afterwards, either in a FastAPI
background task or in scripts/dispatch_notifications.py. Delivery failures
are recorded on the row and logged; they never reach the triggering request.
"""
import smtplib
import uuid
from datetime import datetime
from email.message import EmailMessage
from typing import Dict, Iterable, List, Optional, Any

import structlog
from fastapi import BackgroundTasks
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal
from ..models.models import Notification
from . import email_templates


SUBJECT_LENGTH = Notification.__table__.c.subject.type.length


def queue_email(
    db: Session,
    template_key: str,
    recipient_email: str,
    payload: Optional[Dict[str, Any]] = None,
    user_id: Optional[uuid.UUID] = None,
) -> Notification:
    """Insert a pending e-mail in the caller's transaction (caller commits)."""
    notification = Notification(
        user_id=user_id,
        recipient_email=recipient_email,
        channel="email",
        template_key=template_key,
        payload_json=payload or {},
        status="pending",
        attempts=0,
        created_at=datetime.utcnow(),
    )
    db.add(notification)
    db.flush()
    structlog.get_logger().info(
        "notification_queued",
        notification_id=str(notification.id),
        template_key=template_key,
        recipient=recipient_email,
    )
    return notification


def mail_configured() -> bool:
    return bool(settings.enable_email and settings.smtp_host and settings.mail_from)


def send_email(to: str, subject: str, html_body: str) -> None:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg.set_content("Bitte öffnen Sie diese E-Mail in einem HTML-fähigen Programm.")
    msg.add_alternative(html_body, subtype="html")
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as s:
        if settings.smtp_tls:
            s.starttls()
        if settings.smtp_username and settings.smtp_password:
            s.login(settings.smtp_username, settings.smtp_password)
        s.send_message(msg)


def deliver(db: Session, notification: Notification) -> str:
    """Attempt one delivery; returns the resulting status. Caller commits."""
    log = structlog.get_logger().bind(notification_id=str(notification.id), template_key=notification.template_key)
    if not mail_configured():
        notification.status = "skipped"
        notification.error_message = "E-mail delivery disabled or SMTP not configured"
        log.info("notification_skipped", recipient=notification.recipient_email)
        return notification.status

    notification.attempts = (notification.attempts or 0) + 1
    try:
        rendered = email_templates.render(db, notification.template_key, notification.payload_json or {})
        # Stored copy is cut to the column width; the mail keeps the full subject
        notification.subject = rendered.subject[:SUBJECT_LENGTH]
        send_email(notification.recipient_email, rendered.subject, rendered.html_body)
    except Exception as e:
        notification.status = "failed"
        notification.error_message = str(e)
        log.warning("notification_failed", attempts=notification.attempts, error=str(e))
        return notification.status

    notification.status = "sent"
    notification.sent_at = datetime.utcnow()
    notification.error_message = None
    log.info("notification_sent", recipient=notification.recipient_email, source=rendered.source)
    return notification.status


def _deliverable(db: Session):
    return db.query(Notification).filter(
        or_(
            Notification.status == "pending",
            Notification.status == "failed",
        ),
        Notification.attempts < settings.notification_max_attempts,
    )


def deliver_pending(db: Session, limit: int = 100) -> Dict[str, int]:
    """Drain the queue oldest first; failed rows are retried until the attempt limit."""
    counts: Dict[str, int] = {"sent": 0, "failed": 0, "skipped": 0}
    rows: List[Notification] = _deliverable(db).order_by(Notification.created_at.asc()).limit(limit).all()
    for notification in rows:
        status = deliver(db, notification)
        db.commit()
        counts[status] = counts.get(status, 0) + 1
    return counts


def deliver_notifications(notification_ids: Iterable[uuid.UUID]) -> None:
    """Background-task entry point; uses its own session."""
    db = SessionLocal()
    try:
        ids = list(notification_ids)
        if not ids:
            return
        rows = _deliverable(db).filter(Notification.id.in_(ids)).all()
        for notification in rows:
            deliver(db, notification)
            db.commit()
    except Exception as e:
        db.rollback()
        structlog.get_logger().error("notification_dispatch_failed", error=str(e))
    finally:
        db.close()


def schedule_delivery(background_tasks: Optional[BackgroundTasks], notifications: Iterable[Optional[Notification]]) -> None:
    """Hand freshly committed notifications to a post-response task."""
    ids = [n.id for n in notifications if n is not None]
    if not ids or background_tasks is None or not settings.dispatch_inline:
        return
    background_tasks.add_task(deliver_notifications, ids)
