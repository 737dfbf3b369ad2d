from typing import Callable, Optional

from sqlalchemy.orm import Session

from relay.channels import get_adapter
from relay.logging_config import get_logger
from relay.models.enums import ChannelType
from relay.services.channel_service import get_decrypted_credentials
from relay.services.job_queue import SEND_MESSAGE_RETRY_JOB, WEBHOOK_RETRY_QUEUE, enqueue_job

logger = get_logger("sender")

RETRY_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 5

# replies for these travel inline (TwiML) or over realtime push
NO_OUTBOUND = (ChannelType.WEB, ChannelType.VOICE)


class OutboundSender:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def deliver(self, channel_type: str, customer_id: str, content: str, workspace_id, metadata: Optional[dict] = None) -> None:
        """Send through the channel adapter without any retry bookkeeping."""
        channel = ChannelType(channel_type)
        if channel in NO_OUTBOUND:
            logger.debug(f"{channel.value} channel: reply delivered inline, nothing to send")
            return

        metadata = metadata or {}
        with self.session_factory() as db:
            credentials = get_decrypted_credentials(db, workspace_id, channel.value)

        adapter = get_adapter(channel)
        if channel is ChannelType.SLACK:
            adapter.send(metadata.get("slackChannel") or customer_id, content, credentials, metadata)
        else:
            adapter.send(customer_id, content, credentials, metadata)
        logger.info(
            "Message sent",
            extra={"context": {"channel_type": channel.value, "customer_id": customer_id, "workspace_id": str(workspace_id)}},
        )

    def send_message(self, channel_type: str, customer_id: str, content: str, workspace_id, metadata: Optional[dict] = None) -> None:
        """Deliver a reply; on failure queue a durable retry and re-raise."""
        try:
            self.deliver(channel_type, customer_id, content, workspace_id, metadata)
        except Exception as e:
            logger.error(
                f"Failed to send message, enqueueing retry: {e}",
                extra={"context": {"channel_type": channel_type, "customer_id": customer_id, "workspace_id": str(workspace_id)}},
            )
            self._enqueue_retry(channel_type, customer_id, content, workspace_id, metadata)
            raise

    def _enqueue_retry(self, channel_type, customer_id, content, workspace_id, metadata) -> None:
        try:
            with self.session_factory() as db:
                enqueue_job(
                    db,
                    queue=WEBHOOK_RETRY_QUEUE,
                    name=SEND_MESSAGE_RETRY_JOB,
                    payload_json={
                        "channelType": channel_type,
                        "customerId": customer_id,
                        "content": content,
                        "workspaceId": str(workspace_id),
                        "metadata": metadata,
                    },
                    max_attempts=RETRY_ATTEMPTS,
                    backoff_seconds=RETRY_BACKOFF_SECONDS,
                    delay_seconds=RETRY_BACKOFF_SECONDS,
                )
                db.commit()
        except Exception as queue_error:
            logger.error(f"Failed to enqueue retry job: {queue_error}")
