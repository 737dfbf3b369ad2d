import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from relay.database import Base


class Channel(Base):
    """Workspace connection to a messaging channel or ticketing integration."""

    __tablename__ = "channels"
    __table_args__ = (UniqueConstraint("workspace_id", "type", name="uq_channels_workspace_type"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    type = Column(Text, nullable=False)  # ChannelType value or ZENDESK, FRESHDESK, GORGIAS
    is_active = Column(Boolean, nullable=False, default=True)
    credentials = Column(Text)  # Fernet token, see relay.security
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    agent_links = relationship("AgentChannel", back_populates="channel")


class AgentChannel(Base):
    __tablename__ = "agent_channels"
    __table_args__ = (UniqueConstraint("agent_id", "channel_id", name="uq_agent_channels"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agent_id = Column(Uuid, ForeignKey("agents.id"), nullable=False)
    channel_id = Column(Uuid, ForeignKey("channels.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    agent = relationship("Agent", back_populates="channels")
    channel = relationship("Channel", back_populates="agent_links")
