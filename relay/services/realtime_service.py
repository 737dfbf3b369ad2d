import json
from datetime import datetime, timezone

import redis

from relay.logging_config import get_logger

logger = get_logger("realtime_service")


def workspace_channel(workspace_id) -> str:
    return f"ws:{workspace_id}"


def conversation_channel(conversation_id) -> str:
    return f"conv:{conversation_id}"


class RealtimePublisher:
    """Publishes dashboard/widget events over Redis pub/sub.

    A socket gateway subscribes to `ws:<workspaceId>` and `conv:<conversationId>`
    and fans events out to connected clients. Publishing is best-effort.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    def _publish(self, channel: str, event: str, data: dict) -> None:
        message = json.dumps({"event": event, "data": data}, default=str)
        try:
            self.client.publish(channel, message)
        except redis.RedisError as e:
            logger.warning(f"Realtime publish failed: {e}", extra={"context": {"channel": channel, "event": event}})

    def emit_to_workspace(self, workspace_id, event: str, data: dict) -> None:
        self._publish(workspace_channel(workspace_id), event, data)

    def emit_to_conversation(self, conversation_id, event: str, data: dict) -> None:
        self._publish(conversation_channel(conversation_id), event, data)


def message_event(message) -> dict:
    data = {
        "id": str(message.id),
        "role": message.role,
        "content": message.content,
        "conversationId": str(message.conversation_id),
        "createdAt": message.created_at,
    }
    if message.role == "ASSISTANT":
        data["confidence"] = message.confidence
        data["latencyMs"] = message.latency_ms
    return data


def conversation_updated_event(conversation_id, last_message: str) -> dict:
    return {
        "conversationId": str(conversation_id),
        "lastMessage": last_message[:120],
        "updatedAt": datetime.now(timezone.utc),
    }
