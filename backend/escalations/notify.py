"""
Escalation notifications.

Email contacts are paged via SendGrid; sms / slack / phone contacts are
logged only until a provider is wired in.
"""

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import get_settings

logger = structlog.get_logger()


def _render(tracking_number: str, attempt_number: int, position: str, reason: str, dashboard_url: str) -> str:
    return f"""
    <div style="font-family: Inter, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background: #0f172a; color: white; padding: 24px; border-radius: 12px 12px 0 0;">
        <h1 style="margin: 0; font-size: 20px;">Fleetline Escalation</h1>
      </div>
      <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0;">
        <div style="background: #fef2f2; border-left: 4px solid #dc2626;
                    padding: 16px; border-radius: 0 8px 8px 0; margin-bottom: 16px;">
          <p style="margin: 0; font-weight: 600; color: #1e293b;">
            Shipment {tracking_number}: attempt {attempt_number} ({position})
          </p>
        </div>
        <p style="color: #334155; line-height: 1.6;">{reason}</p>
        <a href="{dashboard_url}/escalations"
           style="display: inline-block; background: #4f46e5; color: white;
                  padding: 10px 20px; border-radius: 8px; text-decoration: none;
                  margin-top: 16px; font-weight: 500;">
          Acknowledge in Dashboard
        </a>
      </div>
    </div>
    """


async def notify_contact(contact, log, tracking_number: str) -> bool:
    """
    Page the contact for one escalation attempt.

    Returns True if a message was handed to the provider. Never raises: the
    escalation log is already committed when this runs.
    """
    settings = get_settings()
    reason = (log.payload or {}).get("reason", "Escalation")

    if contact.contact_type != "email":
        logger.info(
            "escalation.notify_channel_unsupported",
            contact_id=str(contact.contact_id),
            contact_type=contact.contact_type,
        )
        return False

    if not settings.sendgrid_api_key:
        logger.info("escalation.notify_skipped", contact_id=str(contact.contact_id), reason="sendgrid_not_configured")
        return False

    to_email = contact.user.email if contact.user is not None else None
    if not to_email:
        logger.warning("escalation.notify_no_address", contact_id=str(contact.contact_id))
        return False

    try:
        sg = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
        email = Mail(
            from_email=settings.escalation_from_email,
            to_emails=to_email,
            subject=f"Fleetline Escalation: {tracking_number} (attempt {log.attempt_number})",
            html_content=_render(
                tracking_number,
                log.attempt_number,
                contact.position,
                reason,
                settings.dashboard_url,
            ),
        )
        response = sg.send(email)
        sent = response.status_code in (200, 201, 202)
    except Exception as exc:
        logger.warning("escalation.notify_failed", contact_id=str(contact.contact_id), error=str(exc))
        return False

    logger.info("escalation.notified", contact_id=str(contact.contact_id), sent=sent)
    return sent
