import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx

from relay.errors import ChannelSendError, InvalidSignature, MissingCredentials
from relay.logging_config import get_logger
from relay.models.enums import ChannelType

logger = get_logger("channels")

SEND_TIMEOUT_SECONDS = 15.0


@dataclass
class CanonicalInbound:
    external_id: str
    customer_id: str
    content: str
    customer_name: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class ChannelAdapter(ABC):
    """One provider integration: parse inbound webhooks, send replies, verify signatures.

    Adapters never touch the database. `send` raises `MissingCredentials` for
    incomplete credentials and `ChannelSendError` for transport failures, which
    callers treat as retryable.
    """

    channel_type: ChannelType
    required_credentials: tuple = ()

    @abstractmethod
    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        """Canonical message, or None for events that should be ignored."""

    @abstractmethod
    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        pass

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: str, **extra) -> None:
        """Accept everything unless the adapter signs its webhooks."""

    def require(self, credentials: Mapping[str, str]) -> None:
        missing = [key for key in self.required_credentials if not credentials.get(key)]
        if missing:
            raise MissingCredentials(
                f"{self.channel_type.value} credentials missing: {', '.join(missing)}"
            )

    def post(self, url: str, **kwargs) -> httpx.Response:
        """POST to the provider, mapping transport and HTTP errors to ChannelSendError."""
        try:
            with httpx.Client(timeout=SEND_TIMEOUT_SECONDS) as client:
                response = client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise ChannelSendError(f"{self.channel_type.value} request failed: {e}") from e

        if response.status_code >= 300:
            logger.error(
                f"{self.channel_type.value} send failed: {response.status_code}",
                extra={"context": {"status": response.status_code, "body": response.text[:500]}},
            )
            raise ChannelSendError(f"{self.channel_type.value} API error: {response.status_code}")
        return response


def verify_hub_signature(raw_body: bytes, signature: Optional[str], secret: str, label: str) -> None:
    """Meta-style `sha256=<hex>` HMAC over the raw body."""
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    if not signature or not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise InvalidSignature(f"{label} webhook signature verification failed")


def first(items) -> Optional[Any]:
    if isinstance(items, list) and items:
        return items[0]
    return None
