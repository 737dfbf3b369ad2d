"""Twilio voice calls. Replies are spoken inline through TwiML, never pushed."""

from typing import Any, Mapping, Optional
from xml.sax.saxutils import escape, quoteattr

from relay.channels.base import CanonicalInbound, ChannelAdapter
from relay.channels.sms import verify_twilio_signature
from relay.models.enums import ChannelType

DEFAULT_VOICE = "Polly.Joanna"

_GATHER = '<Gather input="speech" speechTimeout="{timeout}" speechModel="phone_call" action="./turn" method="POST">'


def _say(text: str, voice: str = DEFAULT_VOICE) -> str:
    return f"<Say voice={quoteattr(voice)}>{escape(text)}</Say>"


def _response(*verbs: str) -> str:
    body = "\n  ".join(verbs)
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<Response>\n  {body}\n</Response>'


def initial_twiml(agent_name: str) -> str:
    return _response(
        _say(f"Hello! You're speaking with {agent_name}. How can I help you today?"),
        _GATHER.format(timeout=3) + _say("Please go ahead and speak after the tone.") + "</Gather>",
        _say("I didn't catch that. Please call again if you need help."),
    )


def response_twiml(content: str, tts_voice: Optional[str] = None) -> str:
    voice = tts_voice or DEFAULT_VOICE
    return _response(
        _say(content, voice),
        _GATHER.format(timeout=3) + "</Gather>",
        _say("I didn't catch that. Could you please repeat?", voice),
        _GATHER.format(timeout=5) + "</Gather>",
        "<Hangup/>",
    )


def fallback_twiml(message: str, voice: str = DEFAULT_VOICE) -> str:
    return _response(_say(message, voice), "<Hangup/>")


def no_input_twiml() -> str:
    return _response(
        _say("Sorry, I didn't catch that. Could you repeat?"),
        _GATHER.format(timeout=5) + "</Gather>",
        _say("I'm having trouble hearing you. Please try calling again."),
        "<Hangup/>",
    )


class VoiceAdapter(ChannelAdapter):
    channel_type = ChannelType.VOICE

    def parse_inbound(self, payload: Any) -> Optional[CanonicalInbound]:
        speech = (payload.get("SpeechResult") or "").strip()
        caller = payload.get("From")
        if not speech or not caller:
            return None
        call_sid = payload.get("CallSid") or ""
        return CanonicalInbound(
            external_id=call_sid,
            customer_id=caller,
            content=speech,
            metadata={"callSid": call_sid},
        )

    def send(self, recipient: str, text: str, credentials: Mapping[str, str], metadata: Optional[dict] = None) -> None:
        return None

    def verify_signature(self, raw_body: bytes, signature: Optional[str], secret: str, **extra) -> None:
        verify_twilio_signature(signature, secret, extra["url"], extra.get("params") or {})
