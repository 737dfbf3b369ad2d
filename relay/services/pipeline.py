"""Per-message AI pipeline.

One run takes an inbound customer message through conversation resolution,
business rules, retrieval, completion, scoring and handoff, recording each
checkpoint before moving on. Accounting, tagging and handoff routing happen
after the reply is stored and never change what the customer receives.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from relay.channels import CanonicalInbound
from relay.errors import AgentNotFound
from relay.logging_config import LoggerAdapter, get_logger
from relay.models import Agent
from relay.models.enums import AgentStatus, ChannelType, CreditReason, MessageRole
from relay.services.alert_service import report_exception
from relay.services.business_hours import closed_message, is_within_business_hours
from relay.services.confidence_service import ConfidenceScorer
from relay.services.conversation_service import get_or_create_conversation, load_history, save_message
from relay.services.credit_service import CreditLedger
from relay.services.handoff_service import HandoffRouter, decide_handoff
from relay.services.knowledge_service import KnowledgeRetriever
from relay.services.llm import LLMProvider, LLMResponse, StreamSink
from relay.services.prompt_service import build_messages
from relay.services.realtime_service import RealtimePublisher, conversation_updated_event, message_event
from relay.services.tagging_service import AutoTagger
from relay.tasks import BackgroundTaskRunner

logger = get_logger("pipeline")

COMPLETION_TEMPERATURE = 0.4
COMPLETION_MAX_TOKENS = 1024
MESSAGE_COST = 1
TAGGING_MIN_CONFIDENCE = 0.6

DISABLED_REPLY = "This agent is currently disabled and cannot respond to messages."

__all__ = ["InboundMessage", "PipelineMessage", "PipelineOrchestrator", "PipelineResult", "StreamSink"]


@dataclass
class InboundMessage:
    workspace_id: object
    agent_id: object
    channel_type: str
    external_id: str
    customer_id: str
    content: str
    customer_name: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    is_voice_call: bool = False

    @classmethod
    def from_canonical(cls, canonical: CanonicalInbound, workspace_id, agent_id, channel_type) -> "InboundMessage":
        channel_type = ChannelType(channel_type)
        return cls(
            workspace_id=workspace_id,
            agent_id=agent_id,
            channel_type=channel_type.value,
            external_id=canonical.external_id,
            customer_id=canonical.customer_id,
            customer_name=canonical.customer_name,
            content=canonical.content,
            metadata=dict(canonical.metadata),
            is_voice_call=channel_type is ChannelType.VOICE,
        )


@dataclass
class PipelineMessage:
    id: str
    role: str
    content: str
    confidence: float
    latency_ms: int
    tokens: Optional[int] = None


@dataclass
class PipelineResult:
    conversation_id: str
    message: PipelineMessage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineOrchestrator:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        ledger: CreditLedger,
        retriever: KnowledgeRetriever,
        llm: LLMProvider,
        scorer: ConfidenceScorer,
        handoff_router: HandoffRouter,
        tagger: AutoTagger,
        realtime: RealtimePublisher,
        tasks: BackgroundTaskRunner,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.retriever = retriever
        self.llm = llm
        self.scorer = scorer
        self.handoff_router = handoff_router
        self.tagger = tagger
        self.realtime = realtime
        self.tasks = tasks
        self.clock = clock

    def run(self, inbound: InboundMessage, sink: Optional[StreamSink] = None) -> PipelineResult:
        started = time.monotonic()
        log = LoggerAdapter(logger, {"workspace_id": str(inbound.workspace_id), "agent_id": str(inbound.agent_id)})

        with self.session_factory() as db:
            agent = db.get(Agent, inbound.agent_id)
            if agent is None:
                raise AgentNotFound("Agent not found")

            if agent.status == AgentStatus.INACTIVE.value:
                log.info("Agent disabled, returning canned reply")
                return PipelineResult(
                    conversation_id=f"disabled-{inbound.agent_id}",
                    message=PipelineMessage(
                        id=f"disabled-{int(time.time() * 1000)}",
                        role=MessageRole.ASSISTANT.value,
                        content=DISABLED_REPLY,
                        confidence=1.0,
                        latency_ms=0,
                    ),
                )

            conversation, created = get_or_create_conversation(
                db,
                workspace_id=inbound.workspace_id,
                agent_id=agent.id,
                channel_type=inbound.channel_type,
                customer_id=inbound.customer_id,
                external_id=inbound.external_id,
                customer_name=inbound.customer_name,
                metadata=inbound.metadata,
            )
            user_message = save_message(db, conversation.id, MessageRole.USER.value, inbound.content)
            db.commit()
            log = log.bind(conversation_id=str(conversation.id))

            if created:
                self.realtime.emit_to_workspace(
                    inbound.workspace_id,
                    "conversation:new",
                    {
                        "conversationId": str(conversation.id),
                        "channelType": inbound.channel_type,
                        "customerId": inbound.customer_id,
                        "customerName": inbound.customer_name,
                        "createdAt": conversation.created_at or self.clock(),
                    },
                )
            self.realtime.emit_to_conversation(conversation.id, "message:new", message_event(user_message))

            if agent.business_hours and not is_within_business_hours(agent.business_hours, self.clock()):
                return self._reply_out_of_hours(db, agent, conversation.id, inbound.workspace_id, log)

            history = load_history(db, conversation.id, exclude_message_id=user_message.id)

        # no connection is held from here until the reply is stored
        try:
            self.ledger.check_low_credits(inbound.workspace_id)
        except Exception as e:
            log.warning(f"Credit pre-check failed: {e}")

        passages = self.retriever.retrieve(agent.id, inbound.content)
        messages = build_messages(agent, passages, history, inbound.content, inbound.is_voice_call)

        response = self._complete(messages, sink)
        latency_ms = int((time.monotonic() - started) * 1000)
        if response.cancelled:
            log.info(f"Stream cancelled by client, persisting {len(response.content)} chars")

        scores = self.scorer.score(inbound.content, response.content, passages)
        should_handoff = decide_handoff(agent, scores, inbound.content)

        with self.session_factory() as db:
            assistant_message = save_message(
                db,
                conversation.id,
                MessageRole.ASSISTANT.value,
                response.content,
                confidence=scores.composite,
                latency_ms=latency_ms,
                tokens=response.total_tokens or 0,
            )
            db.commit()

        tagging = bool(agent.tagging_enabled and agent.available_tags and scores.composite >= TAGGING_MIN_CONFIDENCE)
        available_tags = list(agent.available_tags or [])

        try:
            self.ledger.deduct(inbound.workspace_id, MESSAGE_COST, CreditReason.MESSAGE_CONSUMED.value, str(conversation.id))
        except Exception as e:
            report_exception(
                "Credit deduction failed",
                e,
                {"workspace_id": str(inbound.workspace_id), "conversation_id": str(conversation.id)},
            )

        if tagging:
            self.tasks.submit(
                "auto-tag",
                self.tagger.tag,
                conversation.id,
                inbound.workspace_id,
                inbound.content,
                response.content,
                available_tags,
                context={"conversation_id": str(conversation.id)},
                report=False,
            )

        self.realtime.emit_to_conversation(conversation.id, "message:new", message_event(assistant_message))
        self.realtime.emit_to_workspace(
            inbound.workspace_id, "conversation:updated", conversation_updated_event(conversation.id, response.content)
        )

        if should_handoff:
            self.tasks.submit(
                "handoff",
                self.handoff_router.trigger,
                agent.id,
                conversation.id,
                scores,
                inbound.content,
                response.content,
                context={"conversation_id": str(conversation.id)},
            )

        log.info(
            "Pipeline completed",
            context={"latency_ms": latency_ms, "confidence": round(scores.composite, 3), "handoff": should_handoff},
        )
        return PipelineResult(
            conversation_id=str(conversation.id),
            message=PipelineMessage(
                id=str(assistant_message.id),
                role=MessageRole.ASSISTANT.value,
                content=response.content,
                confidence=scores.composite,
                latency_ms=latency_ms,
                tokens=assistant_message.tokens,
            ),
        )

    def _complete(self, messages: list, sink: Optional[StreamSink]) -> LLMResponse:
        if sink is not None:
            return self.llm.stream(
                messages, sink, temperature=COMPLETION_TEMPERATURE, max_tokens=COMPLETION_MAX_TOKENS
            )
        return self.llm.generate(messages, temperature=COMPLETION_TEMPERATURE, max_tokens=COMPLETION_MAX_TOKENS)

    def _reply_out_of_hours(self, db: Session, agent: Agent, conversation_id, workspace_id, log) -> PipelineResult:
        content = closed_message(agent.business_hours)
        message = save_message(
            db,
            conversation_id,
            MessageRole.ASSISTANT.value,
            content,
            confidence=1.0,
            latency_ms=1,
            tokens=0,
        )
        db.commit()
        log.info("Outside business hours, sent closed message")

        self.realtime.emit_to_conversation(conversation_id, "message:new", message_event(message))
        self.realtime.emit_to_workspace(workspace_id, "conversation:updated", conversation_updated_event(conversation_id, content))
        return PipelineResult(
            conversation_id=str(conversation_id),
            message=PipelineMessage(
                id=str(message.id),
                role=MessageRole.ASSISTANT.value,
                content=content,
                confidence=1.0,
                latency_ms=1,
                tokens=0,
            ),
        )
