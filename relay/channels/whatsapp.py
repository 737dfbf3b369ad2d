from typing import Any, Mapping, Optional

from relay.channels.base import CanonicalInbound, ChannelAdapter, first, logger, verify_hub_signature
from relay.models.enums import ChannelType

GRAPH_API = "https://graph.facebook.com/v18.0"


class WhatsAppAdapter(ChannelAdapter):
    channel_type = ChannelType.WHATSAPP
    required_credentials = ("phoneNumberId", "accessToken")

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        try:
            entry = first(payload.get("entry"))
            change = first(entry.get("changes")) if entry else None
            value = (change or {}).get("value") or {}
            message = first(value.get("messages"))
            if not message:
                return None

            # status updates, media and reactions are ignored
            if message.get("type") != "text":
                logger.debug(f"WhatsApp: non-text message ({message.get('type')}), skipping")
                return None

            content = (message.get("text") or {}).get("body")
            if not content:
                return None

            contact = first(value.get("contacts")) or {}
            return CanonicalInbound(
                external_id=message["id"],
                customer_id=message["from"],
                customer_name=(contact.get("profile") or {}).get("name"),
                content=content,
            )
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning(f"WhatsApp parse_inbound failed: {e}")
            return None

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        self.require(credentials)
        self.post(
            f"{GRAPH_API}/{credentials['phoneNumberId']}/messages",
            headers={"Authorization": f"Bearer {credentials['accessToken']}"},
            json={
                "messaging_product": "whatsapp",
                "to": recipient,
                "type": "text",
                "text": {"body": text},
            },
        )

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: str, **extra) -> None:
        verify_hub_signature(raw_body, signature, secret, "WhatsApp")
