"""Booking notifications.

Every message is written to email_logs first, then sent right away. A failed send leaves
the row `failed` and the Celery task process_email_queue retries it until MAX_ATTEMPTS.
"""
import logging
import smtplib
import uuid
from email.message import EmailMessage

import requests
from sqlalchemy.orm import Session

from tripc.core.config import settings
from tripc.core.timeutils import utcnow
from tripc.models.booking import Booking
from tripc.models.email_log import EmailLog
from tripc.models.user import User

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"

# Transport failures worth a retry
SEND_ERRORS = (OSError, smtplib.SMTPException, RuntimeError, requests.RequestException)


def send_email(to_email: str, subject: str, body: str) -> None:
    """SendGrid when an API key is configured, plain SMTP otherwise (MailHog locally)."""
    if settings.SENDGRID_API_KEY:
        _sendgrid(to_email, subject, body)
    else:
        _smtp(to_email, subject, body)


def _smtp(to_email: str, subject: str, body: str) -> None:
    msg = EmailMessage()
    msg["From"], msg["To"], msg["Subject"] = settings.SMTP_FROM, to_email, subject
    msg.set_content(body)
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _sendgrid(to_email: str, subject: str, body: str) -> None:
    r = requests.post(
        SENDGRID_URL,
        json={
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        },
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid rejected message ({r.status_code}): {r.text}")


def _deliver(log: EmailLog) -> bool:
    """One send attempt for a logged message. Updates the row; the caller commits."""
    log.attempts = (log.attempts or 0) + 1
    try:
        send_email(log.to_email, log.subject, log.body)
    except SEND_ERRORS as e:
        log.status = "failed"
        logger.warning(
            "Email send failed id=%s to=%s booking=%s attempt=%s: %s",
            log.id, log.to_email, log.related_booking_code, log.attempts, e,
        )
        return False
    log.status = "sent"
    log.sent_at = utcnow()
    return True


def queue_email(db: Session, to_email: str, subject: str, body: str, related_booking_code: str = "") -> str:
    log = EmailLog(
        id=str(uuid.uuid4()),
        to_email=to_email,
        subject=subject,
        body=body,
        status="queued",
        attempts=0,
        related_booking_code=related_booking_code,
    )
    db.add(log)
    db.commit()
    _deliver(log)
    db.commit()
    return log.id


def process_pending_emails(db: Session, limit: int = 50) -> dict:
    """Retry up to `limit` queued/failed messages, oldest first."""
    batch = (
        db.query(EmailLog)
        .filter(
            EmailLog.status.in_(("queued", "failed")),
            EmailLog.attempts < MAX_ATTEMPTS,
            EmailLog.body.isnot(None),
            EmailLog.body != "",
        )
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent = sum(1 for log in batch if _deliver(log))
    if batch:
        db.commit()
    return {"processed": len(batch), "sent": sent, "failed": len(batch) - sent}


def _recipient(db: Session, b: Booking) -> tuple[str, str]:
    if b.user_id:
        u = db.get(User, b.user_id)
        if u and u.email:
            return u.email, u.full_name or ""
    return b.guest_email, b.guest_name


def _money(amount: int, currency: str) -> str:
    if currency == "VND":
        return f"{amount:,} VND"
    return f"{amount / 100:.2f} {currency}"


def notify_booking_confirmed(db: Session, b: Booking) -> str | None:
    to_email, name = _recipient(db, b)
    if not to_email:
        logger.warning("No recipient for confirmation booking=%s", b.booking_code)
        return None
    when = f"{b.slot_date} {b.slot_time}" if b.slot_date else "-"
    body = (
        f"Hi {name or 'there'},\n\n"
        f"Your booking {b.booking_code} is confirmed.\n\n"
        f"Item: {b.title}\n"
        f"Date: {when}\n"
        f"Guests: {b.party_size}\n"
        f"Total paid: {_money(b.total_amount, b.currency)}\n\n"
        f"Thank you for booking with TripC.\n"
    )
    return queue_email(db, to_email, f"TripC: booking {b.booking_code} confirmed", body, related_booking_code=b.booking_code)


def notify_booking_cancelled(db: Session, b: Booking) -> str | None:
    to_email, name = _recipient(db, b)
    if not to_email:
        return None
    body = (
        f"Hi {name or 'there'},\n\n"
        f"Your booking {b.booking_code} ({b.title}) has been cancelled.\n"
        f"Reason: {b.cancellation_reason or '-'}\n"
    )
    return queue_email(db, to_email, f"TripC: booking {b.booking_code} cancelled", body, related_booking_code=b.booking_code)
