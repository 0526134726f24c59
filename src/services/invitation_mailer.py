"""Invitation email delivery.

Sends the accept link for a freshly created or reissued invitation.

Delivery channels:
- EMAIL: Real async SMTP via aiosmtplib
- FALLBACK: Structured log entry when SMTP is not configured

Configuration via environment variables (loaded through Settings):
- SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM, SMTP_USE_TLS
- PUBLIC_BASE_URL (accept links are {PUBLIC_BASE_URL}/invite/{token})

Sending is fire-and-forget: failures are logged but never propagate to the
inviter, so an SMTP outage cannot fail an invitation that was already saved.
"""

from __future__ import annotations

import asyncio
import email.mime.text
import email.utils
from functools import lru_cache
from typing import Any

import aiosmtplib
import structlog

from src.config import Settings, get_settings

log = structlog.get_logger(__name__)


def build_accept_url(public_base_url: str, token: str) -> str:
    return f"{public_base_url.rstrip('/')}/invite/{token}"


class InvitationMailer:
    """Sends invitation emails.

    Instantiate with explicit credentials (useful for testing), or call
    ``InvitationMailer.from_settings()`` to read from the app config.
    """

    def __init__(
        self,
        public_base_url: str,
        smtp_host: str | None = None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        smtp_from: str = "noreply@workspaces.local",
        smtp_use_tls: bool = False,
        invitation_ttl_days: int = 7,
    ) -> None:
        self.public_base_url = public_base_url
        self.invitation_ttl_days = invitation_ttl_days
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_from = smtp_from
        self.smtp_use_tls = smtp_use_tls
        # Strong references so pending sends are not garbage collected
        self._pending: set[asyncio.Task[bool]] = set()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> InvitationMailer:
        cfg = settings or get_settings()
        return cls(
            public_base_url=cfg.public_base_url,
            smtp_host=cfg.smtp_host,
            smtp_port=cfg.smtp_port,
            smtp_user=cfg.smtp_user,
            smtp_password=(
                cfg.smtp_password.get_secret_value() if cfg.smtp_password else None
            ),
            smtp_from=cfg.smtp_from,
            smtp_use_tls=cfg.smtp_use_tls,
            invitation_ttl_days=cfg.invitation_ttl_days,
        )

    def send_invitation(
        self,
        *,
        to: str,
        token: str,
        tenant_name: str,
        role: str,
        invited_by: str | None = None,
    ) -> bool:
        """Schedule the invitation email as a background task.

        Returns False when SMTP is not configured; the accept link is then
        only written to the log.
        """
        accept_url = build_accept_url(self.public_base_url, token)
        if not self.smtp_host:
            log.info(
                "invitation_mailer.email_skipped",
                reason="smtp_not_configured",
                to=to,
                tenant_name=tenant_name,
            )
            return False

        subject = f"You've been invited to join {tenant_name}"
        body = self._format_invitation(tenant_name, role, accept_url, invited_by)

        task = asyncio.create_task(self._send_email(to, subject, body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _send_email(self, to: str, subject: str, body: str) -> bool:
        """Send an email via SMTP using aiosmtplib.

        Uses STARTTLS by default (smtp_use_tls=False). Set smtp_use_tls=True
        for implicit TLS (port 465).
        """
        try:
            message = email.mime.text.MIMEText(body, "plain", "utf-8")
            message["From"] = self.smtp_from
            message["To"] = to
            message["Subject"] = subject
            message["Date"] = email.utils.formatdate(localtime=True)
            message["Message-ID"] = email.utils.make_msgid()

            smtp_kwargs: dict[str, Any] = {
                "hostname": self.smtp_host,
                "port": self.smtp_port,
                "use_tls": self.smtp_use_tls,
            }
            if self.smtp_user:
                smtp_kwargs["username"] = self.smtp_user
            if self.smtp_password:
                smtp_kwargs["password"] = self.smtp_password

            await aiosmtplib.send(message, **smtp_kwargs)

            log.info("invitation_mailer.email_sent", to=to, smtp_host=self.smtp_host)
            return True

        except aiosmtplib.SMTPException as exc:
            log.error("invitation_mailer.email_smtp_error", to=to, error=str(exc))
            return False
        except OSError as exc:
            log.error("invitation_mailer.email_failed", to=to, error=str(exc))
            return False

    def _format_invitation(
        self,
        tenant_name: str,
        role: str,
        accept_url: str,
        invited_by: str | None,
    ) -> str:
        inviter = f"{invited_by} has invited you" if invited_by else "You have been invited"
        return (
            f"{inviter} to join {tenant_name} as {role.replace('_', ' ').lower()}.\n\n"
            f"Accept the invitation:\n{accept_url}\n\n"
            f"This link expires in {self.invitation_ttl_days} days. "
            "If you were not expecting this email, you can ignore it.\n"
        )


@lru_cache(maxsize=1)
def get_invitation_mailer() -> InvitationMailer:
    """Process-wide mailer (FastAPI dependency; override in tests)."""
    return InvitationMailer.from_settings()
