import json
import os

# must be set before relay.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CHANNEL_ENCRYPTION_KEY"] = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="
os.environ["WORKERS_ENABLED"] = "false"

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from relay.context import build_context  # noqa: E402
from relay.database import init_db  # noqa: E402
from relay.models import Agent, AgentChannel, User, Workspace, WorkspaceMember  # noqa: E402
from relay.services.channel_service import upsert_channel  # noqa: E402
from relay.services.credit_service import CreditLedger  # noqa: E402
from relay.services.llm import LLMProvider, LLMResponse  # noqa: E402


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls the service makes."""

    def __init__(self):
        self.store = {}
        self.published = []

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        return True

    def setex(self, key, ttl, value):
        self.store[key] = str(value)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.store)

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 0

    def close(self):
        pass

    def events(self, name):
        return [payload["data"] for _, payload in self.published if payload["event"] == name]


class FakeLLM(LLMProvider):
    """Answers each prompt kind the service sends with a canned response."""

    def __init__(self, reply="Our store opens at 9am.", scores=None, tags=None, summary="Customer needs help."):
        self.reply = reply
        self.scores = scores or {"factual": 0.9, "intent": 0.9, "emotional": 0.9}
        self.tags = tags or []
        self.summary = summary
        self.stream_chunks = None
        self.prompts = []

    def generate(self, messages, model=None, temperature=0.7, max_tokens=1000, response_format=None):
        prompt = messages[-1]["content"]
        self.prompts.append(messages)
        if "confidence evaluator" in prompt:
            content = json.dumps(self.scores)
        elif "select the most relevant tags" in prompt:
            content = json.dumps({"tags": self.tags})
        elif prompt.startswith("Summarize this customer support conversation"):
            content = self.summary
        else:
            content = self.reply
        return LLMResponse(content=content, model="fake-model", usage={"total_tokens": 42})

    def stream(self, messages, sink, model=None, temperature=0.7, max_tokens=1000):
        self.prompts.append(messages)
        content = ""
        for chunk in self.stream_chunks or [self.reply]:
            if sink.cancelled:
                return LLMResponse(content=content, model="fake-model", cancelled=True)
            sink.emit(chunk)
            content += chunk
        return LLMResponse(content=content, model="fake-model", usage={"total_tokens": 42})

    def embed(self, text, model=None):
        return [0.1] * 8


class InlineTaskRunner:
    """Runs submitted tasks immediately; failures are recorded, not raised."""

    def __init__(self):
        self.submitted = []
        self.errors = []

    def submit(self, name, fn, *args, context=None, report=True, **kwargs):
        self.submitted.append(name)
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            self.errors.append((name, e))
            return None

    def shutdown(self, wait=False):
        pass


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def tasks():
    return InlineTaskRunner()


@pytest.fixture
def workspace(session_factory):
    with session_factory() as db:
        ws = Workspace(slug="acme", name="Acme", plan="STARTER")
        owner = User(email="owner@acme.test", name="Owner")
        db.add_all([ws, owner])
        db.flush()
        db.add(WorkspaceMember(workspace_id=ws.id, user_id=owner.id, role="OWNER"))
        db.commit()
        return ws


@pytest.fixture
def agent(session_factory, workspace):
    with session_factory() as db:
        agent = Agent(
            workspace_id=workspace.id,
            name="Ava",
            status="ACTIVE",
            system_prompt="You are the Acme support assistant.",
            available_tags=[],
        )
        db.add(agent)
        db.commit()
        return agent


@pytest.fixture
def enable_channel(session_factory):
    """Connect a channel to the workspace and link it to the agent."""

    def _enable(workspace, agent, channel_type, credentials=None, active=True):
        with session_factory() as db:
            channel = upsert_channel(db, workspace.id, channel_type, credentials or {}, is_active=True)
            db.add(AgentChannel(agent_id=agent.id, channel_id=channel.id, is_active=active))
            db.commit()
            return channel

    return _enable


@pytest.fixture
def ledger(session_factory, fake_redis):
    return CreditLedger(session_factory, fake_redis)


@pytest.fixture
def funded(ledger, workspace):
    ledger.grant(workspace.id, 500, "PLAN_GRANT")
    return workspace


@pytest.fixture
def ctx(session_factory, fake_redis, fake_llm, tasks):
    context = build_context(session_factory=session_factory, redis_client=fake_redis, llm=fake_llm, tasks=tasks)
    context.retriever = context.pipeline.retriever = Mock(retrieve=Mock(return_value=[]))
    return context


@pytest.fixture
def update_agent(session_factory):
    def _update(agent, **fields):
        with session_factory() as db:
            row = db.get(Agent, agent.id)
            for key, value in fields.items():
                setattr(row, key, value)
            db.commit()

    return _update


@pytest.fixture
def client(ctx):
    from fastapi.testclient import TestClient

    from relay.main import app

    app.state.ctx = ctx
    yield TestClient(app)
    app.state.ctx = None
