from relay.channels.base import CanonicalInbound, ChannelAdapter
from relay.channels.email import EmailAdapter
from relay.channels.messenger import MessengerAdapter
from relay.channels.slack import SlackAdapter
from relay.channels.sms import SmsAdapter
from relay.channels.telegram import TelegramAdapter
from relay.channels.voice import VoiceAdapter
from relay.channels.web import WebAdapter
from relay.channels.whatsapp import WhatsAppAdapter
from relay.errors import UnsupportedChannel
from relay.models.enums import ChannelType

ADAPTERS: dict[ChannelType, ChannelAdapter] = {
    ChannelType.WEB: WebAdapter(),
    ChannelType.WHATSAPP: WhatsAppAdapter(),
    ChannelType.TELEGRAM: TelegramAdapter(),
    ChannelType.SMS: SmsAdapter(),
    ChannelType.SLACK: SlackAdapter(),
    ChannelType.EMAIL: EmailAdapter(),
    ChannelType.VOICE: VoiceAdapter(),
    ChannelType.MESSENGER: MessengerAdapter(),
}


def get_adapter(channel_type) -> ChannelAdapter:
    try:
        return ADAPTERS[ChannelType(channel_type)]
    except (KeyError, ValueError) as e:
        raise UnsupportedChannel(f"Unsupported channel type: {channel_type}") from e


__all__ = ["ADAPTERS", "CanonicalInbound", "ChannelAdapter", "ChannelType", "get_adapter"]
