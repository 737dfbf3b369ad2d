from dataclasses import dataclass
from typing import Callable, Optional

import redis
from fastapi import Request
from sqlalchemy.orm import Session

from relay.cache import create_redis
from relay.config import Settings, get_settings
from relay.database import SessionLocal
from relay.services.confidence_service import ConfidenceScorer
from relay.services.credit_service import CreditLedger
from relay.services.dispatcher import Dispatcher
from relay.services.email_service import EmailService
from relay.services.handoff_service import HandoffRouter
from relay.services.knowledge_service import KnowledgeRetriever
from relay.services.llm import LLMProvider, OpenAIProvider
from relay.services.pipeline import PipelineOrchestrator
from relay.services.realtime_service import RealtimePublisher
from relay.services.sender import OutboundSender
from relay.services.tagging_service import AutoTagger
from relay.tasks import BackgroundTaskRunner


@dataclass
class AppContext:
    """Every long-lived collaborator, built once at startup."""

    settings: Settings
    session_factory: Callable[[], Session]
    redis: redis.Redis
    llm: LLMProvider
    realtime: RealtimePublisher
    email: EmailService
    ledger: CreditLedger
    retriever: KnowledgeRetriever
    scorer: ConfidenceScorer
    handoff_router: HandoffRouter
    tagger: AutoTagger
    tasks: BackgroundTaskRunner
    pipeline: PipelineOrchestrator
    dispatcher: Dispatcher
    sender: OutboundSender

    def close(self) -> None:
        self.tasks.shutdown()
        self.redis.close()


def build_context(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[Callable[[], Session]] = None,
    redis_client: Optional[redis.Redis] = None,
    llm: Optional[LLMProvider] = None,
    tasks: Optional[BackgroundTaskRunner] = None,
) -> AppContext:
    settings = settings or get_settings()
    session_factory = session_factory or SessionLocal
    redis_client = redis_client if redis_client is not None else create_redis(settings)
    llm = llm or OpenAIProvider(
        api_key=settings.openai_api_key,
        default_model=settings.openai_model,
        base_url=settings.openai_base_url,
        embedding_model=settings.openai_embedding_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )
    tasks = tasks or BackgroundTaskRunner(max_workers=settings.background_max_workers)

    realtime = RealtimePublisher(redis_client)
    email = EmailService(settings)
    ledger = CreditLedger(session_factory, redis_client, email)
    retriever = KnowledgeRetriever(llm, redis_client, settings)
    scorer = ConfidenceScorer(llm)
    handoff_router = HandoffRouter(session_factory, llm, realtime, email)
    tagger = AutoTagger(llm, session_factory, ledger)
    pipeline = PipelineOrchestrator(
        session_factory=session_factory,
        ledger=ledger,
        retriever=retriever,
        llm=llm,
        scorer=scorer,
        handoff_router=handoff_router,
        tagger=tagger,
        realtime=realtime,
        tasks=tasks,
    )

    return AppContext(
        settings=settings,
        session_factory=session_factory,
        redis=redis_client,
        llm=llm,
        realtime=realtime,
        email=email,
        ledger=ledger,
        retriever=retriever,
        scorer=scorer,
        handoff_router=handoff_router,
        tagger=tagger,
        tasks=tasks,
        pipeline=pipeline,
        dispatcher=Dispatcher(session_factory, pipeline),
        sender=OutboundSender(session_factory),
    )


def get_app_context(request: Request) -> AppContext:
    """FastAPI dependency returning the context stored on the app at startup."""
    return request.app.state.ctx
