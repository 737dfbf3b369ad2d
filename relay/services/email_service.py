from typing import Iterable, Optional

import httpx
from sqlalchemy.orm import Session

from relay.config import Settings
from relay.errors import ChannelSendError
from relay.logging_config import get_logger
from relay.models import User, WorkspaceMember

logger = get_logger("email_service")

RESEND_URL = "https://api.resend.com/emails"


class EmailService:
    """Transactional email through the Resend REST API."""

    def __init__(self, settings: Settings):
        self.api_key = settings.resend_api_key
        self.sender = settings.resend_from
        self.frontend_url = settings.frontend_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.sender)

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        """Send an email and return the provider message id."""
        payload = {"from": self.sender, "to": to, "subject": subject, "html": html}
        if text:
            payload["text"] = text

        try:
            with httpx.Client(timeout=15.0) as client:
                response = client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise ChannelSendError(f"Resend request failed: {e}") from e

        if response.status_code >= 300:
            raise ChannelSendError(f"Resend API error: {response.status_code} - {response.text}")

        message_id = response.json().get("id", "")
        logger.info(f"Email sent: to={to}, subject={subject!r}, id={message_id}")
        return message_id


def first_member_email(db: Session, workspace_id, roles: Iterable[str]) -> Optional[str]:
    """Email of the earliest workspace member holding one of `roles`."""
    row = (
        db.query(User.email)
        .join(WorkspaceMember, WorkspaceMember.user_id == User.id)
        .filter(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.role.in_(list(roles)))
        .order_by(WorkspaceMember.created_at)
        .first()
    )
    return row[0] if row else None
