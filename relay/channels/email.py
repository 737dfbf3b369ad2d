import html
import re
from typing import Any, Mapping, Optional

from relay.channels.base import CanonicalInbound, ChannelAdapter, logger
from relay.config import get_settings
from relay.errors import MissingCredentials
from relay.models.enums import ChannelType

RESEND_URL = "https://api.resend.com/emails"
DEFAULT_SUBJECT = "Reply from Support"

_ADDRESS_RE = re.compile(r"<([^>]+)>")


def strip_html(markup: str) -> str:
    text = re.sub(r"<script[\s\S]*?</script>", "", markup, flags=re.IGNORECASE)
    text = re.sub(r"<style[\s\S]*?</style>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<br\s*/?>|</p>|</div>|</li>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text).replace("\xa0", " ")
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def parse_email_address(sender: str) -> str:
    """`"Jane <Jane@Example.com>"` -> `jane@example.com`."""
    match = _ADDRESS_RE.search(sender)
    if match:
        return match.group(1).strip().lower()
    return sender.strip().lower()


def text_to_html(content: str) -> str:
    paragraphs = "".join(f"<p>{html.escape(line)}</p>" for line in content.split("\n"))
    return f'<div style="font-family: sans-serif; line-height: 1.6;">{paragraphs}</div>'


class EmailAdapter(ChannelAdapter):
    """Inbound-parse webhooks in, Resend out."""

    channel_type = ChannelType.EMAIL

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        try:
            sender = str(payload.get("from") or "")
            customer_id = parse_email_address(sender)
            if not customer_id:
                return None

            raw = payload.get("text")
            if not raw and payload.get("html"):
                raw = strip_html(str(payload["html"]))
            content = str(raw or "").strip()
            if not content:
                return None

            subject = str(payload.get("subject") or "")
            return CanonicalInbound(
                external_id=str(payload.get("message-id") or payload.get("messageId") or ""),
                customer_id=customer_id,
                content=content,
                metadata={"subject": subject, "from": sender},
            )
        except AttributeError as e:
            logger.warning(f"Email parse_inbound failed: {e}")
            return None

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        settings = get_settings()
        if not settings.resend_api_key:
            raise MissingCredentials("Resend API key not configured")
        sender = credentials.get("fromAddress") or settings.resend_from
        if not sender:
            raise MissingCredentials("Email fromAddress not configured")

        response = self.post(
            RESEND_URL,
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            json={
                "from": sender,
                "to": recipient,
                "subject": (metadata or {}).get("subject") or DEFAULT_SUBJECT,
                "html": text_to_html(text),
                "text": text,
            },
        )
        logger.info(f"Email sent: id={response.json().get('id')}")
