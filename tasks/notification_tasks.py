"""
tasks/notification_tasks.py
Celery tasks for transactional email (Resend).

In-app and real-time notifications are written by the request handlers;
these tasks only cover the email channel, which is best effort.

Usage from a route:
    from tasks.notification_tasks import enqueue, send_welcome_email
    enqueue(send_welcome_email, email=user.email, first_name=user.first_name)
"""

import html
import logging

from celery import Task

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def enqueue(task: Task, **kwargs) -> None:
    """Queue a task without letting broker trouble reach the request."""
    try:
        task.delay(**kwargs)
    except Exception as e:
        logger.warning(f"Could not queue {task.name}: {e}")


# ── Delivery ───────────────────────────────────────────────────────────────────

def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        import resend
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


def _layout(heading: str, body_html: str) -> str:
    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #1F2937; padding: 20px; border-radius: 8px 8px 0 0; text-align: center;">
            <h1 style="color: white; margin: 0;">{html.escape(settings.APP_NAME)}</h1>
        </div>
        <div style="background: white; padding: 24px; border: 1px solid #eee; border-radius: 0 0 8px 8px;">
            <h2 style="color: #333;">{html.escape(heading)}</h2>
            {body_html}
        </div>
    </div>
    """


# ── Channel Task ───────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_email(self, to_email: str, subject: str, html_body: str) -> bool:
    """Send a single email, retrying with backoff while Resend is failing."""
    if not settings.RESEND_API_KEY:
        logger.info(f"Email delivery disabled; skipped '{subject}' to {to_email}")
        return False
    if not _send_email(to_email, subject, html_body):
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    return True


# ── Account Emails ─────────────────────────────────────────────────────────────

@celery_app.task
def send_welcome_email(email: str, first_name: str, role: str) -> None:
    audience = "start receiving gig requests" if role == "MUSICIAN" else "book musicians for your events"
    body = (
        f"<p>Hi {html.escape(first_name)},</p>"
        f"<p>Welcome aboard! Your account is ready and you can now {audience}.</p>"
    )
    send_email.delay(email, f"Welcome to {settings.APP_NAME}", _layout("Welcome!", body))


@celery_app.task
def send_login_alert(email: str, first_name: str, ip_address: str, user_agent: str, login_at: str) -> None:
    body = (
        f"<p>Hi {html.escape(first_name)},</p>"
        "<p>We noticed a new sign-in to your account.</p>"
        "<ul>"
        f"<li>Time: {html.escape(login_at)}</li>"
        f"<li>IP address: {html.escape(ip_address or 'unknown')}</li>"
        f"<li>Device: {html.escape(user_agent or 'unknown')}</li>"
        "</ul>"
        "<p>If this wasn't you, reset your password right away.</p>"
    )
    send_email.delay(email, "New login to your account", _layout("New sign-in", body))


@celery_app.task
def send_password_reset_email(email: str, first_name: str, reset_url: str) -> None:
    body = (
        f"<p>Hi {html.escape(first_name)},</p>"
        "<p>Use the link below to choose a new password. "
        f"It expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes.</p>"
        f'<p><a href="{html.escape(reset_url)}">Reset password</a></p>'
        "<p>If you didn't ask for this, you can ignore this email.</p>"
    )
    send_email.delay(email, "Reset your password", _layout("Password reset", body))


@celery_app.task
def send_password_changed_email(email: str, first_name: str) -> None:
    body = (
        f"<p>Hi {html.escape(first_name)},</p>"
        "<p>Your password was just changed. If this wasn't you, contact support immediately.</p>"
    )
    send_email.delay(email, "Your password was changed", _layout("Password changed", body))
