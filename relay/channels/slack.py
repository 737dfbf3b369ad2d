import hashlib
import hmac
import time
from typing import Any, Mapping, Optional

from relay.channels.base import CanonicalInbound, ChannelAdapter, logger
from relay.errors import ChannelSendError, InvalidSignature
from relay.models.enums import ChannelType

SLACK_API = "https://slack.com/api"
MAX_REQUEST_AGE_SECONDS = 300


class SlackAdapter(ChannelAdapter):
    channel_type = ChannelType.SLACK
    required_credentials = ("botToken",)

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        try:
            event = payload.get("event") or {}
            if event.get("type") != "message":
                return None
            # bot echoes, edits, joins
            if event.get("bot_id") or event.get("subtype"):
                return None
            content = event.get("text")
            if not content:
                return None

            ts = event.get("ts") or ""
            return CanonicalInbound(
                external_id=ts,
                customer_id=event.get("user") or "",
                content=content,
                metadata={"slackChannel": event.get("channel") or "", "threadTs": event.get("thread_ts") or ts},
            )
        except AttributeError as e:
            logger.warning(f"Slack parse_inbound failed: {e}")
            return None

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        """`recipient` is the Slack channel id; replies thread under metadata['threadTs']."""
        self.require(credentials)
        payload = {"channel": recipient, "text": text, "mrkdwn": True}
        thread_ts = (metadata or {}).get("threadTs")
        if thread_ts:
            payload["thread_ts"] = thread_ts

        response = self.post(
            f"{SLACK_API}/chat.postMessage",
            headers={"Authorization": f"Bearer {credentials['botToken']}"},
            json=payload,
        )
        data = response.json()
        if not data.get("ok"):
            logger.error(f"Slack API returned error: {data.get('error')}")
            raise ChannelSendError(f"Slack API error: {data.get('error')}")

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: str, **extra) -> None:
        timestamp = extra.get("timestamp")
        now = extra.get("now") or time.time()
        try:
            if abs(now - int(timestamp)) > MAX_REQUEST_AGE_SECONDS:
                raise InvalidSignature("Slack request timestamp too old")
        except (TypeError, ValueError) as e:
            raise InvalidSignature("Slack request timestamp missing") from e

        base = b"v0:" + str(timestamp).encode("utf-8") + b":" + raw_body
        expected = "v0=" + hmac.new(secret.encode("utf-8"), base, hashlib.sha256).hexdigest()
        if not signature or not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            raise InvalidSignature("Slack webhook signature verification failed")
