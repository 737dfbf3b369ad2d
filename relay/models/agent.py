import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from relay.database import Base, JSONType


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    name = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE, DRAFT
    system_prompt = Column(Text, nullable=False, default="")
    routing_policy = Column(Text)
    support_email = Column(Text)
    handoff_enabled = Column(Boolean, nullable=False, default=False)
    handoff_threshold = Column(Float)
    handoff_dest = Column(Text, default="NONE")
    # {"enabled": bool, "timezone": "Europe/Berlin", "closedMessage": str,
    #  "schedule": {"monday": {"enabled": bool, "open": 540, "close": 1020}, ...}}
    business_hours = Column(JSONType)
    tagging_enabled = Column(Boolean, nullable=False, default=False)
    available_tags = Column(JSONType, nullable=False, default=list)
    tts_voice = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    workspace = relationship("Workspace", back_populates="agents")
    channels = relationship("AgentChannel", back_populates="agent")
