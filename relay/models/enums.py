from enum import Enum


class ChannelType(str, Enum):
    WEB = "WEB"
    WHATSAPP = "WHATSAPP"
    TELEGRAM = "TELEGRAM"
    SMS = "SMS"
    SLACK = "SLACK"
    EMAIL = "EMAIL"
    VOICE = "VOICE"
    MESSENGER = "MESSENGER"


class AgentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DRAFT = "DRAFT"


class ConversationStatus(str, Enum):
    OPEN = "OPEN"
    HANDED_OFF = "HANDED_OFF"
    RESOLVED = "RESOLVED"
    ABANDONED = "ABANDONED"


OPEN_CONVERSATION_STATUSES = (ConversationStatus.OPEN.value, ConversationStatus.HANDED_OFF.value)


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


class HandoffTrigger(str, Enum):
    EXPLICIT_REQUEST = "EXPLICIT_REQUEST"
    ANGER_DETECTED = "ANGER_DETECTED"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"


class HandoffDestination(str, Enum):
    NONE = "NONE"
    LIVE_AGENT = "LIVE_AGENT"
    ZENDESK = "ZENDESK"
    FRESHDESK = "FRESHDESK"
    GORGIAS = "GORGIAS"
    EMAIL_QUEUE = "EMAIL_QUEUE"


TICKETING_DESTINATIONS = (HandoffDestination.ZENDESK, HandoffDestination.FRESHDESK, HandoffDestination.GORGIAS)


class CreditReason(str, Enum):
    MESSAGE_CONSUMED = "MESSAGE_CONSUMED"
    TAGGING_CONSUMED = "TAGGING_CONSUMED"
    PLAN_GRANT = "PLAN_GRANT"
    PURCHASE = "PURCHASE"
    PROMO = "PROMO"
    ADJUSTMENT = "ADJUSTMENT"


class Plan(str, Enum):
    STARTER = "STARTER"
    BUILDER = "BUILDER"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class MemberRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"
