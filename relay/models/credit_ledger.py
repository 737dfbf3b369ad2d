import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.sql import func

from relay.database import Base


class CreditLedgerEntry(Base):
    """Immutable accounting event. Balance = SUM(delta) per workspace."""

    __tablename__ = "credit_ledger"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    ref_id = Column(Text)
    balance = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
