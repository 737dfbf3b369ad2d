import hashlib
import hmac
import json
from unittest.mock import patch

import pytest

from relay.channels import ADAPTERS
from relay.channels.sms import twilio_signature
from relay.models import Job
from relay.models.enums import ChannelType
from relay.services.dispatcher import VOICE_UNAVAILABLE

WHATSAPP_CREDS = {"phoneNumberId": "555", "accessToken": "tok", "webhookVerifyToken": "verify-me"}


def whatsapp_body(text="When do you open?"):
    return {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "contacts": [{"profile": {"name": "Jane"}}],
                            "messages": [
                                {"from": "4915100000", "id": "wamid.1", "type": "text", "text": {"body": text}}
                            ],
                        }
                    }
                ]
            }
        ]
    }


@pytest.fixture
def whatsapp(funded, agent, enable_channel):
    enable_channel(funded, agent, "WHATSAPP", WHATSAPP_CREDS)
    return funded


class TestWhatsAppVerification:
    def test_returns_challenge(self, client, whatsapp):
        response = client.get(
            "/v1/webhooks/acme/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
        )
        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_wrong_token_forbidden(self, client, whatsapp):
        response = client.get(
            "/v1/webhooks/acme/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
        )
        assert response.status_code == 403

    def test_unknown_workspace_forbidden(self, client):
        response = client.get("/v1/webhooks/ghost/whatsapp", params={"hub.mode": "subscribe"})
        assert response.status_code == 403


class TestWhatsAppInbound:
    def test_acks_and_replies(self, client, whatsapp):
        with patch.object(ADAPTERS[ChannelType.WHATSAPP], "send") as send:
            response = client.post("/v1/webhooks/acme/whatsapp", json=whatsapp_body())

        assert response.status_code == 200
        assert response.json()["success"] is True
        send.assert_called_once_with("4915100000", "Our store opens at 9am.", WHATSAPP_CREDS, {})

    def test_status_update_ignored(self, client, whatsapp):
        with patch.object(ADAPTERS[ChannelType.WHATSAPP], "send") as send:
            response = client.post("/v1/webhooks/acme/whatsapp", json={"entry": [{"changes": [{"value": {}}]}]})

        assert response.json() == {"success": True, "message": "ignored"}
        send.assert_not_called()

    def test_invalid_signature_rejected(self, client, whatsapp, ctx, monkeypatch):
        monkeypatch.setattr(ctx.settings, "whatsapp_app_secret", "app-secret")
        response = client.post(
            "/v1/webhooks/acme/whatsapp",
            content=json.dumps(whatsapp_body()),
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=bad"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"

    def test_valid_signature_accepted(self, client, whatsapp, ctx, monkeypatch):
        monkeypatch.setattr(ctx.settings, "whatsapp_app_secret", "app-secret")
        raw = json.dumps(whatsapp_body()).encode()
        signature = "sha256=" + hmac.new(b"app-secret", raw, hashlib.sha256).hexdigest()

        with patch.object(ADAPTERS[ChannelType.WHATSAPP], "send") as send:
            response = client.post(
                "/v1/webhooks/acme/whatsapp",
                content=raw,
                headers={"Content-Type": "application/json", "X-Hub-Signature-256": signature},
            )

        assert response.status_code == 200
        send.assert_called_once()

    def test_send_failure_queues_retry(self, client, whatsapp, session_factory):
        with patch.object(ADAPTERS[ChannelType.WHATSAPP], "send", side_effect=RuntimeError("graph down")):
            response = client.post("/v1/webhooks/acme/whatsapp", json=whatsapp_body())

        assert response.status_code == 200
        with session_factory() as db:
            job = db.query(Job).one()
            assert job.payload_json["content"] == "Our store opens at 9am."


class TestTelegramInbound:
    def test_channel_not_connected_is_dropped(self, client, funded):
        with patch.object(ADAPTERS[ChannelType.TELEGRAM], "send") as send:
            response = client.post(
                "/v1/webhooks/acme/telegram",
                json={"update_id": 1, "message": {"message_id": 5, "chat": {"id": 7}, "text": "hi"}},
            )
        assert response.status_code == 200
        send.assert_not_called()

    def test_secret_token_checked(self, client, funded, ctx, monkeypatch):
        monkeypatch.setattr(ctx.settings, "telegram_webhook_secret", "s3cret")
        response = client.post(
            "/v1/webhooks/acme/telegram",
            json={"update_id": 1},
            headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
        )
        assert response.status_code == 401

    def test_non_ascii_secret_token_rejected(self, client, funded, ctx, monkeypatch):
        monkeypatch.setattr(ctx.settings, "telegram_webhook_secret", "s3cret")
        response = client.post(
            "/v1/webhooks/acme/telegram",
            json={"update_id": 1},
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cr\u00e9t".encode("utf-8")},
        )
        assert response.status_code == 401

    def test_unfunded_workspace_still_answered(self, client, workspace, agent, enable_channel):
        enable_channel(workspace, agent, "TELEGRAM", {"botToken": "t"})
        with patch.object(ADAPTERS[ChannelType.TELEGRAM], "send") as send:
            client.post(
                "/v1/webhooks/acme/telegram",
                json={"update_id": 1, "message": {"message_id": 5, "chat": {"id": 7}, "text": "hi"}},
            )
        assert send.call_args[0][1] == "Our store opens at 9am."


class TestSlackInbound:
    def test_url_verification(self, client, funded):
        response = client.post("/v1/webhooks/acme/slack", json={"type": "url_verification", "challenge": "abc"})
        assert response.json() == {"challenge": "abc"}

    def test_reply_threads_in_channel(self, client, funded, agent, enable_channel):
        enable_channel(funded, agent, "SLACK", {"botToken": "xoxb"})
        event = {"type": "message", "user": "U1", "text": "hi", "channel": "C1", "ts": "1700.5"}
        with patch.object(ADAPTERS[ChannelType.SLACK], "send") as send:
            client.post("/v1/webhooks/acme/slack", json={"type": "event_callback", "event": event})

        recipient, text, creds, metadata = send.call_args[0]
        assert recipient == "C1"
        assert metadata == {"slackChannel": "C1", "threadTs": "1700.5"}


class TestEmailInbound:
    def test_reply_subject(self, client, funded, agent, enable_channel):
        enable_channel(funded, agent, "EMAIL", {"fromAddress": "support@acme.test"})
        with patch.object(ADAPTERS[ChannelType.EMAIL], "send") as send:
            response = client.post(
                "/v1/webhooks/acme/email",
                data={"from": "Jane <jane@example.com>", "text": "Where is my order?", "subject": "Order 77"},
            )

        assert response.status_code == 200
        recipient, _, _, metadata = send.call_args[0]
        assert recipient == "jane@example.com"
        assert metadata["subject"] == "Re: Order 77"


class TestMessengerInbound:
    def test_reply(self, client, funded, agent, enable_channel):
        enable_channel(funded, agent, "MESSENGER", {"pageAccessToken": "p"})
        body = {"entry": [{"messaging": [{"sender": {"id": "PSID"}, "message": {"mid": "m", "text": "hey"}}]}]}
        with patch.object(ADAPTERS[ChannelType.MESSENGER], "send") as send:
            client.post("/v1/webhooks/acme/messenger", json=body)
        assert send.call_args[0][0] == "PSID"


class TestSms:
    def test_inline_twiml_reply(self, client, funded, agent, enable_channel):
        enable_channel(funded, agent, "SMS", {"accountSid": "AC1", "phoneNumber": "+15550000"})
        response = client.post("/v1/webhooks/acme/sms", data={"From": "+15551111", "Body": "hours?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert response.text == "<Response><Message>Our store opens at 9am.</Message></Response>"

    def test_twilio_signature_enforced(self, client, funded, agent, enable_channel):
        enable_channel(funded, agent, "SMS", {"accountSid": "AC1", "authToken": "tw", "phoneNumber": "+1"})
        response = client.post(
            "/v1/webhooks/acme/sms",
            data={"From": "+15551111", "Body": "hours?"},
            headers={"X-Twilio-Signature": "forged"},
        )
        assert response.status_code == 401

    def test_twilio_signature_valid(self, client, funded, agent, enable_channel, ctx):
        enable_channel(funded, agent, "SMS", {"accountSid": "AC1", "authToken": "tw", "phoneNumber": "+1"})
        params = {"From": "+15551111", "Body": "hours?"}
        url = f"{ctx.settings.api_base_url}/v1/webhooks/acme/sms"
        response = client.post(
            "/v1/webhooks/acme/sms",
            data=params,
            headers={"X-Twilio-Signature": twilio_signature("tw", url, params)},
        )
        assert response.status_code == 200
        assert "<Message>" in response.text

    def test_empty_body(self, client, funded):
        response = client.post("/v1/webhooks/acme/sms", data={"From": "+1", "Body": ""})
        assert response.text == "<Response></Response>"


class TestVoice:
    def test_greeting(self, client, funded, agent, enable_channel):
        enable_channel(funded, agent, "VOICE")
        response = client.post("/v1/webhooks/acme/voice", data={"From": "+1", "CallSid": "CA1"})
        assert response.status_code == 200
        assert "You're speaking with Ava" in response.text
        assert "<Gather" in response.text

    def test_turn_speaks_reply(self, client, funded, agent, enable_channel, update_agent):
        enable_channel(funded, agent, "VOICE")
        update_agent(agent, tts_voice="Polly.Amy")
        response = client.post(
            "/v1/webhooks/acme/voice/turn", data={"From": "+1", "CallSid": "CA1", "SpeechResult": "opening hours"}
        )
        assert 'voice="Polly.Amy"' in response.text
        assert "Our store opens at 9am." in response.text

    def test_turn_without_speech(self, client, funded):
        response = client.post("/v1/webhooks/acme/voice/turn", data={"From": "+1", "CallSid": "CA1"})
        assert "Sorry, I didn't catch that" in response.text

    def test_voice_not_connected_says_goodbye(self, client, funded):
        response = client.post(
            "/v1/webhooks/acme/voice/turn", data={"From": "+1", "CallSid": "CA1", "SpeechResult": "hello"}
        )
        assert VOICE_UNAVAILABLE in response.text
        assert "<Hangup/>" in response.text
