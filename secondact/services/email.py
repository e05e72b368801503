from __future__ import annotations

import html
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


def welcome_email_html(name: str) -> str:
    name = html.escape(name)
    return (
        f"<h1>Welcome to Second Act, {name}!</h1>"
        "<p>Your account is ready. Start browsing costumes or list your own "
        "so they can shine on stage again.</p>"
    )


def password_reset_email_html(name: str, reset_link: str) -> str:
    name = html.escape(name)
    link = html.escape(reset_link, quote=True)
    return (
        f"<p>Hi {name},</p>"
        "<p>We received a request to reset your Second Act password. "
        f'<a href="{link}">Choose a new password</a>. This link expires in one hour.</p>'
        "<p>If you did not ask for this, you can ignore this email.</p>"
    )


class ResendMailer:
    """
    Transactional email through the Resend HTTP API.

    Sending is best-effort: a missing key or a provider failure is logged and
    swallowed so it never blocks registration or password reset.
    """

    def __init__(self, api_key: Optional[str], sender: str, app_base_url: str, timeout: float = 10):
        self.api_key = api_key
        self.sender = sender
        self.app_base_url = app_base_url.rstrip("/")
        self.timeout = timeout

    async def _send(self, to: str, subject: str, body_html: str) -> bool:
        if not self.api_key:
            logger.info("RESEND_API_KEY not configured, skipping email %r", subject)
            return False

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": body_html}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(RESEND_URL, json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Resend API error %s sending %r: %s",
                exc.response.status_code, subject, exc.response.text[:200],
            )
            return False
        except httpx.RequestError as exc:
            logger.error("Resend request failed sending %r: %s", subject, exc)
            return False
        return True

    async def send_welcome_email(self, to: str, name: str) -> bool:
        return await self._send(to, "Welcome to Second Act!", welcome_email_html(name))

    def reset_link(self, token: str) -> str:
        return f"{self.app_base_url}/auth/reset-password/{token}"

    async def send_password_reset_email(self, to: str, name: str, token: str) -> bool:
        return await self._send(
            to,
            "Reset Your Password - Second Act",
            password_reset_email_html(name, self.reset_link(token)),
        )
