from relay.models.agent import Agent
from relay.models.analytics_rollup import AnalyticsRollup
from relay.models.channel import AgentChannel, Channel
from relay.models.conversation import Conversation
from relay.models.credit_ledger import CreditLedgerEntry
from relay.models.handoff import Handoff
from relay.models.job import Job
from relay.models.message import Message
from relay.models.workspace import User, Workspace, WorkspaceMember

__all__ = [
    "Workspace",
    "User",
    "WorkspaceMember",
    "Agent",
    "Channel",
    "AgentChannel",
    "Conversation",
    "Message",
    "Handoff",
    "CreditLedgerEntry",
    "Job",
    "AnalyticsRollup",
]
