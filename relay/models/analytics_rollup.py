import uuid

from sqlalchemy import Column, Date, ForeignKey, Integer, UniqueConstraint, Uuid

from relay.database import Base


class AnalyticsRollup(Base):
    __tablename__ = "analytics_rollups"
    __table_args__ = (UniqueConstraint("workspace_id", "agent_id", "date", name="uq_analytics_rollups"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    agent_id = Column(Uuid, ForeignKey("agents.id"))
    date = Column(Date, nullable=False)
    total_messages = Column(Integer, nullable=False, default=0)
    total_conversations = Column(Integer, nullable=False, default=0)
    handoffs = Column(Integer, nullable=False, default=0)
    resolved = Column(Integer, nullable=False, default=0)
    avg_latency_ms = Column(Integer, nullable=False, default=0)
    p95_latency_ms = Column(Integer, nullable=False, default=0)
    credits_consumed = Column(Integer, nullable=False, default=0)
