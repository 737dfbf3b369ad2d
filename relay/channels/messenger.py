from typing import Any, Mapping, Optional

from relay.channels.base import CanonicalInbound, ChannelAdapter, first, logger, verify_hub_signature
from relay.models.enums import ChannelType

SEND_API = "https://graph.facebook.com/v18.0/me/messages"


class MessengerAdapter(ChannelAdapter):
    channel_type = ChannelType.MESSENGER
    required_credentials = ("pageAccessToken",)

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        try:
            entry = first(payload.get("entry")) or {}
            messaging = first(entry.get("messaging")) or {}
            message = messaging.get("message") or {}
            # echoes of our own replies carry is_echo
            if not message.get("text") or message.get("is_echo"):
                return None
            return CanonicalInbound(
                external_id=message.get("mid", ""),
                customer_id=str(messaging["sender"]["id"]),
                content=message["text"],
            )
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning(f"Messenger parse_inbound failed: {e}")
            return None

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        self.require(credentials)
        self.post(
            SEND_API,
            headers={"Authorization": f"Bearer {credentials['pageAccessToken']}"},
            json={"recipient": {"id": recipient}, "message": {"text": text}},
        )

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: str, **extra) -> None:
        verify_hub_signature(raw_body, signature, secret, "Messenger")
