import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from relay.database import Base


class Handoff(Base):
    __tablename__ = "handoffs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    trigger = Column(Text, nullable=False)  # EXPLICIT_REQUEST, ANGER_DETECTED, LOW_CONFIDENCE
    confidence = Column(Float)
    summary = Column(Text)
    destination = Column(Text, nullable=False, default="NONE")
    external_ticket_id = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    resolved_at = Column(DateTime(timezone=True))

    conversation = relationship("Conversation", back_populates="handoffs")
