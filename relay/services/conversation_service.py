from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relay.models import Conversation, Message
from relay.models.enums import OPEN_CONVERSATION_STATUSES, ConversationStatus


def find_open_conversation(db: Session, workspace_id, agent_id, channel_type: str, customer_id: str) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(
            Conversation.workspace_id == workspace_id,
            Conversation.agent_id == agent_id,
            Conversation.channel_type == channel_type,
            Conversation.customer_id == customer_id,
            Conversation.status.in_(OPEN_CONVERSATION_STATUSES),
        )
        .order_by(Conversation.created_at.desc())
        .first()
    )


def get_or_create_conversation(
    db: Session,
    *,
    workspace_id,
    agent_id,
    channel_type: str,
    customer_id: str,
    external_id: Optional[str] = None,
    customer_name: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> Tuple[Conversation, bool]:
    """Reuse the customer's open conversation or create one. Returns (conversation, created).

    A concurrent creator for the same customer loses on the partial unique
    index; the loser rolls back its insert and re-reads the winner's row.
    """
    conversation = find_open_conversation(db, workspace_id, agent_id, channel_type, customer_id)
    if conversation:
        return conversation, False

    conversation = Conversation(
        workspace_id=workspace_id,
        agent_id=agent_id,
        channel_type=channel_type,
        customer_id=customer_id,
        external_id=external_id,
        customer_name=customer_name,
        status=ConversationStatus.OPEN.value,
        tags=[],
        conversation_metadata=metadata or None,
    )
    try:
        with db.begin_nested():
            db.add(conversation)
            db.flush()
    except IntegrityError:
        existing = find_open_conversation(db, workspace_id, agent_id, channel_type, customer_id)
        if existing is None:
            raise
        return existing, False

    return conversation, True


def save_message(
    db: Session,
    conversation_id,
    role: str,
    content: str,
    *,
    confidence: Optional[float] = None,
    latency_ms: Optional[int] = None,
    tokens: Optional[int] = None,
) -> Message:
    message = Message(
        conversation_id=conversation_id,
        role=role,
        content=content,
        confidence=confidence,
        latency_ms=latency_ms,
        tokens=tokens,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def load_history(db: Session, conversation_id, exclude_message_id=None) -> List[Message]:
    """Messages of a conversation in creation order, optionally without one message."""
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if exclude_message_id is not None:
        query = query.filter(Message.id != exclude_message_id)
    return query.order_by(Message.created_at).all()


def merge_tags(db: Session, conversation_id, tags: List[str]) -> List[str]:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return []
    merged = list(conversation.tags or [])
    for tag in tags:
        if tag not in merged:
            merged.append(tag)
    conversation.tags = merged
    db.flush()
    return merged
