import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from relay.database import Base, JSONType

_OPEN_ONLY = text("status IN ('OPEN', 'HANDED_OFF')")


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # at most one open/handed-off conversation per customer thread
        Index(
            "uq_conversations_open_customer",
            "workspace_id",
            "agent_id",
            "channel_type",
            "customer_id",
            unique=True,
            postgresql_where=_OPEN_ONLY,
            sqlite_where=_OPEN_ONLY,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    agent_id = Column(Uuid, ForeignKey("agents.id"), nullable=False)
    channel_type = Column(Text, nullable=False)
    external_id = Column(Text)
    customer_id = Column(Text, nullable=False)
    customer_name = Column(Text)
    status = Column(Text, nullable=False, default="OPEN")  # OPEN, HANDED_OFF, RESOLVED, ABANDONED
    tags = Column(JSONType, nullable=False, default=list)
    conversation_metadata = Column("metadata", JSONType)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    resolved_at = Column(DateTime(timezone=True))

    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
    handoffs = relationship("Handoff", back_populates="conversation")
