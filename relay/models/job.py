import uuid

from sqlalchemy import Column, DateTime, Index, Integer, Text, Uuid
from sqlalchemy.sql import func

from relay.database import Base, JSONType


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (Index("ix_jobs_queue_status_next", "queue", "status", "next_attempt_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    queue = Column(Text, nullable=False)  # webhook-retry, billing, analytics-rollup
    name = Column(Text, nullable=False)
    payload_json = Column(JSONType, nullable=False)
    status = Column(Text, nullable=False, default="PENDING")
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    backoff_seconds = Column(Integer, nullable=False, default=5)
    next_attempt_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
