import base64
import hashlib
import hmac
from typing import Any, Mapping, Optional
from xml.sax.saxutils import escape

from relay.channels.base import CanonicalInbound, ChannelAdapter, logger
from relay.errors import InvalidSignature
from relay.models.enums import ChannelType

TWILIO_API = "https://api.twilio.com/2010-04-01"


def twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(signature: Optional[str], auth_token: str, url: str, params: Mapping[str, str]) -> None:
    expected = twilio_signature(auth_token, url, params)
    if not signature or not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise InvalidSignature("Twilio webhook signature verification failed")


def message_twiml(text: str) -> str:
    return f"<Response><Message>{escape(text)}</Message></Response>"


class SmsAdapter(ChannelAdapter):
    channel_type = ChannelType.SMS
    required_credentials = ("accountSid", "authToken", "phoneNumber")

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        try:
            sender = payload.get("From")
            body = (payload.get("Body") or "").strip()
            if not sender or not body:
                return None
            return CanonicalInbound(
                external_id=str(payload.get("MessageSid") or payload.get("SmsSid") or ""),
                customer_id=str(sender),
                content=body,
            )
        except AttributeError as e:
            logger.warning(f"SMS parse_inbound failed: {e}")
            return None

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        self.require(credentials)
        account_sid = credentials["accountSid"]
        response = self.post(
            f"{TWILIO_API}/Accounts/{account_sid}/Messages.json",
            auth=(account_sid, credentials["authToken"]),
            data={"To": recipient, "From": credentials["phoneNumber"], "Body": text},
        )
        logger.info(f"SMS sent: sid={response.json().get('sid')}")

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: str, **extra) -> None:
        verify_twilio_signature(signature, secret, extra["url"], extra.get("params") or {})
