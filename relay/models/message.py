import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from relay.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    role = Column(Text, nullable=False)  # USER, ASSISTANT, SYSTEM
    content = Column(Text, nullable=False)
    confidence = Column(Float)
    latency_ms = Column(Integer)
    tokens = Column(Integer)
    created_at = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
