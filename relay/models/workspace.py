import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from relay.database import Base


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    plan = Column(Text, nullable=False, default="STARTER")  # STARTER, BUILDER, PRO, ENTERPRISE
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    members = relationship("WorkspaceMember", back_populates="workspace")
    agents = relationship("Agent", back_populates="workspace")


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, unique=True)
    name = Column(Text)


class WorkspaceMember(Base):
    __tablename__ = "workspace_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    role = Column(Text, nullable=False, default="MEMBER")  # OWNER, ADMIN, MEMBER
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User")
