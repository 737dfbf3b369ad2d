from typing import Any, Mapping, Optional

from relay.channels.base import CanonicalInbound, ChannelAdapter
from relay.models.enums import ChannelType


class WebAdapter(ChannelAdapter):
    """Chat widget. Replies reach the browser over realtime push."""

    channel_type = ChannelType.WEB

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        content = (payload.get("content") or "").strip()
        customer_id = payload.get("customerId") or payload.get("sessionId")
        if not content or not customer_id:
            return None
        return CanonicalInbound(
            external_id=str(payload.get("externalId") or customer_id),
            customer_id=str(customer_id),
            customer_name=payload.get("customerName"),
            content=content,
            metadata=payload.get("metadata") or {},
        )

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        return None
