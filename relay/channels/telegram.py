import hmac
from typing import Any, Mapping, Optional

import httpx

from relay.channels.base import CanonicalInbound, ChannelAdapter, logger
from relay.errors import ChannelSendError, InvalidSignature
from relay.models.enums import ChannelType

TELEGRAM_API = "https://api.telegram.org"


class TelegramAdapter(ChannelAdapter):
    channel_type = ChannelType.TELEGRAM
    required_credentials = ("botToken",)

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        try:
            message = payload.get("message")
            if not message:
                return None
            if not message.get("text"):
                logger.debug(f"Telegram: non-text message ({','.join(message.keys())}), skipping")
                return None

            sender = message.get("from") or {}
            chat_id = str((message.get("chat") or {}).get("id") or sender.get("id"))
            name = " ".join(part for part in (sender.get("first_name"), sender.get("last_name")) if part)
            return CanonicalInbound(
                external_id=str(message["message_id"]),
                # chat id keeps group and DM threads apart
                customer_id=chat_id,
                customer_name=name or None,
                content=message["text"],
            )
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning(f"Telegram parse_inbound failed: {e}")
            return None

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        self.require(credentials)
        self.post(
            f"{TELEGRAM_API}/bot{credentials['botToken']}/sendMessage",
            json={"chat_id": recipient, "text": text, "parse_mode": "HTML"},
        )

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: str, **extra) -> None:
        """Compare the X-Telegram-Bot-Api-Secret-Token header with the configured secret."""
        if not signature or not hmac.compare_digest(signature.encode("utf-8"), secret.encode("utf-8")):
            raise InvalidSignature("Telegram webhook secret token mismatch")

    def register_webhook(self, bot_token: str, webhook_url: str, secret_token: Optional[str] = None) -> None:
        data = {"url": webhook_url, "allowed_updates": ["message"], "drop_pending_updates": False}
        if secret_token:
            data["secret_token"] = secret_token
        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.post(f"{TELEGRAM_API}/bot{bot_token}/setWebhook", json=data)
        except httpx.HTTPError as e:
            raise ChannelSendError(f"Failed to register Telegram webhook: {e}") from e

        body = response.json() if response.status_code == 200 else {}
        if not body.get("ok"):
            raise ChannelSendError(f"Telegram webhook error: {body.get('description') or response.text}")
        logger.info(f"Telegram webhook registered: {webhook_url}")
