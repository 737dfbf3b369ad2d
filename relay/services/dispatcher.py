from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from relay.errors import (
    AgentInactive,
    AgentNotFound,
    AppError,
    ChannelNotEnabled,
    InsufficientCredits,
    NoActiveAgent,
    WorkspaceNotFound,
)
from relay.logging_config import get_logger
from relay.models import Agent, AgentChannel, Channel, Workspace
from relay.models.enums import AgentStatus, ChannelType
from relay.services.llm import StreamSink
from relay.services.pipeline import InboundMessage, PipelineOrchestrator, PipelineResult

logger = get_logger("dispatcher")

GENERIC_APOLOGY = "I'm sorry, something went wrong. Please try again later."
VOICE_UNAVAILABLE = "I'm sorry, this assistant is currently unavailable. Goodbye."

FALLBACK_MESSAGES = {
    AgentInactive: "I'm sorry, this assistant is currently disabled. Please try again later.",
    InsufficientCredits: (
        "I'm sorry, this assistant is temporarily unavailable due to a billing issue. Please try again later."
    ),
}

# configuration gaps: nobody set this channel up yet, so nobody expects a reply
SILENT_ERRORS = (ChannelNotEnabled, NoActiveAgent, WorkspaceNotFound)


@dataclass
class DispatchResult:
    content: str
    conversation_id: str


@dataclass
class ResolvedTarget:
    workspace_id: object
    agent_id: object


def fallback_reply(error: BaseException, channel_type: Optional[str] = None) -> Optional[str]:
    """Customer-facing text for a failed dispatch, or None to drop silently.

    Voice calls always get something to say so the call can end cleanly.
    """
    for error_type, message in FALLBACK_MESSAGES.items():
        if isinstance(error, error_type):
            return message
    if isinstance(error, SILENT_ERRORS):
        return VOICE_UNAVAILABLE if channel_type == ChannelType.VOICE.value else None
    return GENERIC_APOLOGY


def channel_enabled(db: Session, agent_id, channel_type: str) -> bool:
    link = (
        db.query(AgentChannel.id)
        .join(Channel, AgentChannel.channel_id == Channel.id)
        .filter(
            AgentChannel.agent_id == agent_id,
            AgentChannel.is_active.is_(True),
            Channel.is_active.is_(True),
            Channel.type == channel_type,
        )
        .first()
    )
    return link is not None


def resolve_from_slug(db: Session, slug: str, channel_type: str) -> ResolvedTarget:
    """Oldest active agent of the workspace that has `channel_type` enabled."""
    workspace = db.query(Workspace).filter(Workspace.slug == slug).first()
    if workspace is None:
        raise WorkspaceNotFound(f'Workspace with slug "{slug}" not found')

    agent_id = (
        db.query(Agent.id)
        .join(AgentChannel, AgentChannel.agent_id == Agent.id)
        .join(Channel, AgentChannel.channel_id == Channel.id)
        .filter(
            Agent.workspace_id == workspace.id,
            Agent.status == AgentStatus.ACTIVE.value,
            AgentChannel.is_active.is_(True),
            Channel.workspace_id == workspace.id,
            Channel.type == channel_type,
            Channel.is_active.is_(True),
        )
        .order_by(Agent.created_at)
        .limit(1)
        .scalar()
    )
    if agent_id is None:
        raise NoActiveAgent(f'No active agent with {channel_type} channel found for workspace "{slug}"')
    return ResolvedTarget(workspace_id=workspace.id, agent_id=agent_id)


class Dispatcher:
    """Entry point for webhook receivers: eligibility checks, then the pipeline."""

    def __init__(self, session_factory: Callable[[], Session], pipeline: PipelineOrchestrator):
        self.session_factory = session_factory
        self.pipeline = pipeline

    def check_eligible(self, inbound: InboundMessage) -> None:
        with self.session_factory() as db:
            agent = db.get(Agent, inbound.agent_id)
            if agent is None:
                raise AgentNotFound(f"Agent {inbound.agent_id} not found")
            if agent.status != AgentStatus.ACTIVE.value:
                raise AgentInactive(f"Agent {agent.name} is not active (status: {agent.status})")
            if not channel_enabled(db, agent.id, inbound.channel_type):
                logger.warning(
                    "Channel not enabled for agent, dropping message",
                    extra={"context": {"agent_id": str(agent.id), "channel_type": inbound.channel_type}},
                )
                raise ChannelNotEnabled(f"Channel {inbound.channel_type} is not enabled for agent {agent.name}")

    def run(self, inbound: InboundMessage, sink: Optional[StreamSink] = None) -> PipelineResult:
        self.check_eligible(inbound)
        return self.pipeline.run(inbound, sink)

    def dispatch(self, inbound: InboundMessage) -> DispatchResult:
        result = self.run(inbound)
        return DispatchResult(content=result.message.content, conversation_id=result.conversation_id)

    def dispatch_or_fallback(self, inbound: InboundMessage) -> Optional[str]:
        """Reply text for the customer: the AI answer, a fallback apology, or None."""
        try:
            return self.dispatch(inbound).content
        except Exception as e:
            if isinstance(e, AppError):
                logger.warning(f"Dispatch failed: {e.code} - {e.message}")
            else:
                logger.error(f"Dispatch failed: {e}", exc_info=e)
            return fallback_reply(e, inbound.channel_type)
