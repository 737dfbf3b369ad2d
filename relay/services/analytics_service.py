import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from relay.logging_config import get_logger
from relay.models import Agent, AnalyticsRollup, Conversation, CreditLedgerEntry, Handoff, Message, Workspace
from relay.models.enums import ConversationStatus, MessageRole

logger = get_logger("analytics_service")


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def p95(values: list[int]) -> int:
    if not values:
        return 0
    ordered = sorted(values)
    return ordered[min(math.floor(len(ordered) * 0.95), len(ordered) - 1)]


def rollup_day(db: Session, day: date, workspace_id, agent_id=None) -> AnalyticsRollup:
    """Recompute one day's totals for a workspace (or one of its agents) and upsert the row."""
    start, end = _day_bounds(day)

    conversation_filters = [Conversation.workspace_id == workspace_id]
    if agent_id is not None:
        conversation_filters.append(Conversation.agent_id == agent_id)

    assistant_messages = (
        db.query(Message.latency_ms)
        .join(Conversation, Message.conversation_id == Conversation.id)
        .filter(
            *conversation_filters,
            Message.role == MessageRole.ASSISTANT.value,
            Message.created_at >= start,
            Message.created_at < end,
        )
        .all()
    )
    latencies = [row.latency_ms for row in assistant_messages if row.latency_ms is not None]

    handoffs = (
        db.query(func.count(Handoff.id))
        .join(Conversation, Handoff.conversation_id == Conversation.id)
        .filter(*conversation_filters, Handoff.created_at >= start, Handoff.created_at < end)
        .scalar()
    )
    conversations = (
        db.query(func.count(Conversation.id))
        .filter(*conversation_filters, Conversation.created_at >= start, Conversation.created_at < end)
        .scalar()
    )
    resolved = (
        db.query(func.count(Conversation.id))
        .filter(
            *conversation_filters,
            Conversation.status == ConversationStatus.RESOLVED.value,
            Conversation.resolved_at >= start,
            Conversation.resolved_at < end,
        )
        .scalar()
    )
    # the ledger is per workspace, so agent rows repeat the workspace figure
    consumed = (
        db.query(func.coalesce(func.sum(CreditLedgerEntry.delta), 0))
        .filter(
            CreditLedgerEntry.workspace_id == workspace_id,
            CreditLedgerEntry.delta < 0,
            CreditLedgerEntry.created_at >= start,
            CreditLedgerEntry.created_at < end,
        )
        .scalar()
    )

    rollup = (
        db.query(AnalyticsRollup)
        .filter(
            AnalyticsRollup.workspace_id == workspace_id,
            AnalyticsRollup.agent_id.is_(None) if agent_id is None else AnalyticsRollup.agent_id == agent_id,
            AnalyticsRollup.date == day,
        )
        .first()
    )
    if rollup is None:
        rollup = AnalyticsRollup(workspace_id=workspace_id, agent_id=agent_id, date=day)
        db.add(rollup)

    rollup.total_messages = len(assistant_messages)
    rollup.total_conversations = conversations or 0
    rollup.handoffs = handoffs or 0
    rollup.resolved = resolved or 0
    rollup.avg_latency_ms = round(sum(latencies) / len(latencies)) if latencies else 0
    rollup.p95_latency_ms = p95(latencies)
    rollup.credits_consumed = abs(int(consumed or 0))
    db.flush()
    return rollup


def run_daily_rollup(db: Session, day: Optional[date] = None) -> int:
    """Roll up `day` (default: yesterday UTC) for every workspace and agent."""
    day = day or (datetime.now(timezone.utc).date() - timedelta(days=1))
    count = 0
    for (workspace_id,) in db.query(Workspace.id).all():
        rollup_day(db, day, workspace_id)
        count += 1
        for (agent_id,) in db.query(Agent.id).filter(Agent.workspace_id == workspace_id).all():
            rollup_day(db, day, workspace_id, agent_id)
            count += 1
    db.commit()
    logger.info(f"Analytics rollup complete: day={day}, rows={count}")
    return count
