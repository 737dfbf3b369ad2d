import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, Mock, patch

import pytest

from relay.channels import get_adapter
from relay.channels.email import parse_email_address, strip_html
from relay.channels.sms import message_twiml, twilio_signature
from relay.channels.voice import fallback_twiml, initial_twiml, response_twiml
from relay.errors import ChannelSendError, InvalidSignature, MissingCredentials, UnsupportedChannel
from relay.models.enums import ChannelType


def whatsapp_payload(text="Hi there", msg_type="text"):
    message = {"from": "4915112345678", "id": "wamid.ABC", "type": msg_type}
    if msg_type == "text":
        message["text"] = {"body": text}
    return {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "contacts": [{"profile": {"name": "Jane"}}],
                            "messages": [message],
                        }
                    }
                ]
            }
        ]
    }


class TestRegistry:
    def test_every_channel_type_has_adapter(self):
        for channel_type in ChannelType:
            assert get_adapter(channel_type).channel_type is channel_type

    def test_unknown_channel_raises(self):
        with pytest.raises(UnsupportedChannel):
            get_adapter("FAX")


class TestWhatsAppAdapter:
    adapter = get_adapter(ChannelType.WHATSAPP)

    def test_parses_text_message(self):
        inbound = self.adapter.parse_inbound(whatsapp_payload())
        assert inbound.customer_id == "4915112345678"
        assert inbound.external_id == "wamid.ABC"
        assert inbound.customer_name == "Jane"
        assert inbound.content == "Hi there"

    def test_ignores_non_text(self):
        assert self.adapter.parse_inbound(whatsapp_payload(msg_type="image")) is None

    def test_ignores_status_update(self):
        payload = {"entry": [{"changes": [{"value": {"statuses": [{"status": "read"}]}}]}]}
        assert self.adapter.parse_inbound(payload) is None

    def test_ignores_malformed(self):
        assert self.adapter.parse_inbound({"entry": "nope"}) is None

    def test_signature_accepts_valid(self):
        body = b'{"entry": []}'
        sig = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
        self.adapter.verify_signature(body, sig, "app-secret")

    def test_signature_rejects_invalid(self):
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(b"{}", "sha256=deadbeef", "app-secret")

    def test_signature_rejects_missing(self):
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(b"{}", None, "app-secret")

    def test_signature_rejects_non_ascii(self):
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(b"{}", "sha256=\u00e9", "app-secret")

    def test_send_requires_credentials(self):
        with pytest.raises(MissingCredentials):
            self.adapter.send("123", "hello", {"phoneNumberId": "1"})

    @patch("relay.channels.base.httpx.Client")
    def test_send_posts_to_graph_api(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200)

        self.adapter.send("4915112345678", "hello", {"phoneNumberId": "555", "accessToken": "tok"})

        url = mock_client.post.call_args[0][0]
        assert url.endswith("/555/messages")
        assert mock_client.post.call_args[1]["json"]["to"] == "4915112345678"

    @patch("relay.channels.base.httpx.Client")
    def test_send_raises_on_http_error(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=500, text="boom")

        with pytest.raises(ChannelSendError):
            self.adapter.send("1", "hello", {"phoneNumberId": "555", "accessToken": "tok"})


class TestTelegramAdapter:
    adapter = get_adapter(ChannelType.TELEGRAM)

    def test_parses_message(self):
        inbound = self.adapter.parse_inbound(
            {
                "update_id": 1,
                "message": {
                    "message_id": 77,
                    "chat": {"id": 9001},
                    "from": {"id": 9001, "first_name": "Ivan", "last_name": "Petrov"},
                    "text": "Hello",
                },
            }
        )
        assert inbound.customer_id == "9001"
        assert inbound.customer_name == "Ivan Petrov"
        assert inbound.external_id == "77"

    def test_ignores_sticker(self):
        assert self.adapter.parse_inbound({"message": {"message_id": 1, "sticker": {}}}) is None

    def test_secret_token(self):
        self.adapter.verify_signature(b"", "s3cret", "s3cret")
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(b"", "wrong", "s3cret")

    def test_non_ascii_secret_token_rejected(self):
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(b"", "s3cr\u00e9t", "s3cret")

    @patch("relay.channels.telegram.httpx.Client")
    def test_register_webhook(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        response = Mock(status_code=200)
        response.json.return_value = {"ok": True}
        mock_client.post.return_value = response

        self.adapter.register_webhook("bot-token", "https://api.example.com/v1/webhooks/acme/telegram", "s3cret")

        url = mock_client.post.call_args[0][0]
        body = mock_client.post.call_args[1]["json"]
        assert url == "https://api.telegram.org/botbot-token/setWebhook"
        assert body["secret_token"] == "s3cret"
        assert body["allowed_updates"] == ["message"]

    @patch("relay.channels.telegram.httpx.Client")
    def test_register_webhook_rejected(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        response = Mock(status_code=400, text="Bad Request")
        mock_client.post.return_value = response

        with pytest.raises(ChannelSendError):
            self.adapter.register_webhook("bot-token", "http://insecure")


class TestSlackAdapter:
    adapter = get_adapter(ChannelType.SLACK)

    def _sign(self, body: bytes, ts: str, secret: str = "signing") -> str:
        base = b"v0:" + ts.encode() + b":" + body
        return "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()

    def test_parses_message_with_thread_metadata(self):
        inbound = self.adapter.parse_inbound(
            {"event": {"type": "message", "user": "U1", "text": "help", "channel": "C1", "ts": "1700.1"}}
        )
        assert inbound.customer_id == "U1"
        assert inbound.metadata == {"slackChannel": "C1", "threadTs": "1700.1"}

    def test_ignores_bot_messages(self):
        payload = {"event": {"type": "message", "bot_id": "B1", "text": "echo", "channel": "C1", "ts": "1"}}
        assert self.adapter.parse_inbound(payload) is None

    def test_ignores_subtypes(self):
        payload = {"event": {"type": "message", "subtype": "message_changed", "text": "x", "ts": "1"}}
        assert self.adapter.parse_inbound(payload) is None

    def test_valid_signature(self):
        now = time.time()
        ts = str(int(now))
        body = b'{"type":"event_callback"}'
        self.adapter.verify_signature(body, self._sign(body, ts), "signing", timestamp=ts, now=now)

    def test_stale_timestamp_rejected(self):
        now = time.time()
        ts = str(int(now) - 301)
        body = b"{}"
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(body, self._sign(body, ts), "signing", timestamp=ts, now=now)

    def test_missing_timestamp_rejected(self):
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(b"{}", "v0=abc", "signing", timestamp=None)

    def test_non_ascii_signature_rejected(self):
        now = time.time()
        with pytest.raises(InvalidSignature):
            self.adapter.verify_signature(b"{}", "v0=\u00e9", "signing", timestamp=str(int(now)), now=now)

    @patch("relay.channels.base.httpx.Client")
    def test_send_raises_when_slack_not_ok(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200, json=Mock(return_value={"ok": False, "error": "channel_not_found"}))

        with pytest.raises(ChannelSendError):
            self.adapter.send("C1", "hello", {"botToken": "xoxb"}, {"threadTs": "1700.1"})

        assert mock_client.post.call_args[1]["json"]["thread_ts"] == "1700.1"


class TestMessengerAdapter:
    adapter = get_adapter(ChannelType.MESSENGER)

    def test_parses_message(self):
        inbound = self.adapter.parse_inbound(
            {"entry": [{"messaging": [{"sender": {"id": "PSID1"}, "message": {"mid": "m1", "text": "hey"}}]}]}
        )
        assert inbound.customer_id == "PSID1"
        assert inbound.content == "hey"

    def test_ignores_echo(self):
        payload = {"entry": [{"messaging": [{"sender": {"id": "P"}, "message": {"text": "x", "is_echo": True}}]}]}
        assert self.adapter.parse_inbound(payload) is None


class TestSmsAndVoice:
    def test_sms_parse(self):
        inbound = get_adapter(ChannelType.SMS).parse_inbound({"From": "+15550001", "Body": " hi ", "MessageSid": "SM1"})
        assert inbound.customer_id == "+15550001"
        assert inbound.content == "hi"

    def test_sms_empty_body_ignored(self):
        assert get_adapter(ChannelType.SMS).parse_inbound({"From": "+15550001", "Body": "  "}) is None

    def test_twilio_signature_roundtrip(self):
        params = {"From": "+1", "Body": "hi"}
        url = "https://api.example.com/v1/webhooks/acme/sms"
        sig = twilio_signature("token", url, params)
        get_adapter(ChannelType.SMS).verify_signature(b"", sig, "token", url=url, params=params)
        with pytest.raises(InvalidSignature):
            get_adapter(ChannelType.SMS).verify_signature(b"", sig, "other", url=url, params=params)

    def test_twilio_non_ascii_signature_rejected(self):
        with pytest.raises(InvalidSignature):
            get_adapter(ChannelType.SMS).verify_signature(b"", "\u00e9", "token", url="https://x.test/sms", params={})

    def test_message_twiml_escapes(self):
        assert message_twiml("a < b & c") == "<Response><Message>a &lt; b &amp; c</Message></Response>"

    def test_voice_parse_requires_speech(self):
        adapter = get_adapter(ChannelType.VOICE)
        assert adapter.parse_inbound({"From": "+1", "SpeechResult": ""}) is None
        inbound = adapter.parse_inbound({"From": "+1", "SpeechResult": "where is my order", "CallSid": "CA1"})
        assert inbound.metadata == {"callSid": "CA1"}

    def test_voice_twiml(self):
        assert "Ava" in initial_twiml("Ava")
        assert 'voice="Polly.Amy"' in response_twiml("Sure.", "Polly.Amy")
        assert 'voice="Polly.Joanna"' in response_twiml("Sure.")
        assert "<Hangup/>" in fallback_twiml("Goodbye.")


class TestEmailAdapter:
    adapter = get_adapter(ChannelType.EMAIL)

    def test_parse_prefers_text(self):
        inbound = self.adapter.parse_inbound(
            {"from": "Jane <Jane@Example.com>", "text": "Where is my order?", "subject": "Order", "message-id": "<m1>"}
        )
        assert inbound.customer_id == "jane@example.com"
        assert inbound.metadata["subject"] == "Order"

    def test_parse_falls_back_to_html(self):
        inbound = self.adapter.parse_inbound({"from": "a@b.c", "html": "<p>Hello<br>world</p><script>x</script>"})
        assert inbound.content == "Hello\nworld"

    def test_helpers(self):
        assert parse_email_address("plain@x.io") == "plain@x.io"
        assert strip_html("<b>a&amp;b</b>") == "a&b"

    def test_send_requires_resend_key(self):
        with pytest.raises(MissingCredentials):
            self.adapter.send("a@b.c", "hi", {"fromAddress": "support@acme.test"})


class TestWebAdapter:
    def test_parse(self):
        inbound = get_adapter(ChannelType.WEB).parse_inbound({"content": "hi", "sessionId": "s1"})
        assert inbound.customer_id == "s1"
        assert json.dumps(inbound.metadata) == "{}"
