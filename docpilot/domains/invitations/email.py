"""Отправка писем-приглашений через Resend.

Доставка письма не влияет на судьбу приглашения: источником истины
остается ссылка, а любая ошибка здесь возвращается как неуспешный
``EmailDeliveryResult``.
"""
import html
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from docpilot.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailDeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


def build_invitation_email(
    invitee_email: str,
    inviter_name: str,
    workspace_name: str,
    role: str,
    link: str,
    ttl_days: int = 7
) -> EmailMessage:
    """Письмо с приглашением в пространство"""
    inviter = html.escape(inviter_name)
    workspace = html.escape(workspace_name)
    safe_link = html.escape(link, quote=True)

    body_html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>You've been invited to collaborate!</h2>
  <p><strong>{inviter}</strong> has invited you to join the workspace
  <strong>"{workspace}"</strong> as a <strong>{html.escape(role)}</strong>.</p>
  <p><a href="{safe_link}">Accept Invitation</a></p>
  <p>Or copy and paste this link into your browser:</p>
  <p style="font-family: monospace; word-break: break-all;">{safe_link}</p>
  <p><strong>Note:</strong> This invitation will expire in {ttl_days} days.</p>
  <p style="color: #666;">If you didn't expect this invitation, you can safely ignore this email.</p>
</div>
"""
    body_text = (
        f"{inviter_name} has invited you to join the workspace \"{workspace_name}\" as a {role}.\n\n"
        f"Accept the invitation: {link}\n\n"
        f"This invitation will expire in {ttl_days} days.\n"
        "If you didn't expect this invitation, you can safely ignore this email.\n"
    )
    return EmailMessage(
        to=invitee_email,
        subject=f"You've been invited to join {workspace_name}",
        html=body_html,
        text=body_text
    )


class ResendEmailSender:
    """Клиент HTTP API Resend"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.api_url = api_url or settings.resend_api_url
        self.sender = sender or settings.email_from
        self.timeout = timeout or settings.email_timeout_seconds

    async def send(self, message: EmailMessage) -> EmailDeliveryResult:
        if not self.api_key:
            logger.warning(f"RESEND_API_KEY is not configured, email to {message.to} not sent")
            return EmailDeliveryResult(success=False, error="Email delivery is not configured")

        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Email delivery to {message.to} failed: {e}")
            return EmailDeliveryResult(success=False, error=str(e))

        if response.is_error:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            logger.warning(f"Resend API error {response.status_code} for {message.to}: {detail}")
            return EmailDeliveryResult(success=False, error=f"Resend API error: {detail or 'Unknown error'}")

        message_id = response.json().get("id")
        logger.info(f"Invitation email sent to {message.to}, message id {message_id}")
        return EmailDeliveryResult(success=True, message_id=message_id)


def get_email_sender() -> ResendEmailSender:
    return ResendEmailSender()
