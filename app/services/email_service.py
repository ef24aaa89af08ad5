# app/services/email_service.py
"""
Email notification service for finished exports.

Uses Resend API to tell the requesting facilitator that their export
is ready to download. Delivery problems never affect the export itself.
"""

import logging
from datetime import datetime
from typing import Any

from app.config import get_settings

logger = logging.getLogger(__name__)


class EmailService:
    """
    Service for sending export notification emails.

    Disabled (returns "skipped") unless EMAIL_ENABLED and RESEND_API_KEY are set.
    """

    def __init__(self):
        """Initialize email service with settings."""
        self.settings = get_settings()
        self._resend_client = None

    @property
    def resend_client(self):
        """Lazy-load Resend client."""
        if self._resend_client is None and self.settings.RESEND_API_KEY:
            import resend

            resend.api_key = self.settings.RESEND_API_KEY
            self._resend_client = resend
        return self._resend_client

    def send_export_ready(
        self,
        recipient: str | None,
        project_name: str,
        download_url: str,
        expires_at: datetime | None,
    ) -> dict[str, Any]:
        """
        Send an "export ready" email.

        Returns:
            Dict with status ("sent", "skipped", "failed") and details
        """
        if not self.settings.EMAIL_ENABLED:
            logger.info("[EMAIL] Email notifications disabled")
            return {"status": "skipped", "reason": "EMAIL_ENABLED=false"}

        if not self.settings.RESEND_API_KEY:
            logger.info("[EMAIL] RESEND_API_KEY not configured")
            return {"status": "skipped", "reason": "RESEND_API_KEY not set"}

        if not recipient:
            return {"status": "skipped", "reason": "no recipient"}

        try:
            response = self.resend_client.Emails.send(
                {
                    "from": self.settings.EMAIL_FROM,
                    "to": [recipient],
                    "subject": f"Your export of {project_name} is ready",
                    "html": self._render_export_ready_html(project_name, download_url, expires_at),
                }
            )

            logger.info(f"[EMAIL] Sent export-ready email to {recipient}, id={response.get('id')}")
            return {"status": "sent", "message_id": response.get("id"), "recipient": recipient}

        except Exception as e:
            logger.error(f"[EMAIL] Failed to send export-ready email: {e}")
            return {"status": "failed", "error": str(e)}

    def _render_export_ready_html(
        self,
        project_name: str,
        download_url: str,
        expires_at: datetime | None,
    ) -> str:
        expiry_line = ""
        if expires_at:
            expiry_line = f"<p>The download link is available until {expires_at.strftime('%B %d, %Y')}.</p>"
        return (
            "<html><body>"
            f"<h2>{project_name}</h2>"
            "<p>Your family story archive has been prepared.</p>"
            f'<p><a href="{download_url}">Download your export</a></p>'
            f"{expiry_line}"
            "</body></html>"
        )
