"""
Email service for notifying staff when a caller's email is captured.
"""
import asyncio
from html import escape
from typing import Any, Dict, List, Optional, cast

import resend
import structlog

logger = structlog.get_logger(__name__)


class EmailService:
    """Sends lead notifications through Resend. Disabled without an API key or recipients."""

    def __init__(self, api_key: str, sender: str, recipients: List[str]):
        self.sender = sender
        self.recipients = list(recipients)
        self.enabled = bool(api_key) and bool(self.recipients)
        if api_key:
            resend.api_key = api_key

    def build_payload(self, phone_number: str, email: str, lead: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        name = (lead or {}).get("name") or "Unknown"
        subject = f"Lead email captured: {name} ({phone_number})"
        html = f"""
        <h2>Voice Lead Agent: Email Captured</h2>
        <p><strong>Name:</strong> {escape(str(name))}<br/>
        <strong>Phone:</strong> {escape(phone_number)}<br/>
        <strong>Email:</strong> {escape(email)}<br/>
        <strong>Status:</strong> {escape(str((lead or {}).get('status') or 'new'))}</p>
        """
        return {"from": self.sender, "to": self.recipients, "subject": subject, "html": html}

    async def send_lead_captured(self, phone_number: str, email: str,
                                 lead: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Notify recipients about a captured email.
        Returns None on success (or when disabled), error message on failure.
        """
        if not self.enabled:
            return None
        try:
            payload = self.build_payload(phone_number, email, lead)
            await asyncio.to_thread(resend.Emails.send, cast(Any, payload))
            logger.info("Lead notification sent", phone_number=phone_number, recipients=len(self.recipients))
            return None
        except Exception as e:
            logger.error("Lead notification failed", phone_number=phone_number, error=str(e))
            return str(e)
