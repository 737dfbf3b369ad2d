from typing import Optional

from sqlalchemy.orm import Session

from relay.errors import ChannelNotFound
from relay.logging_config import get_logger
from relay.models import Channel
from relay.security import decrypt_credentials, encrypt_credentials

logger = get_logger("channel_service")


def get_channel(db: Session, workspace_id, channel_type: str) -> Optional[Channel]:
    return (
        db.query(Channel)
        .filter(Channel.workspace_id == workspace_id, Channel.type == channel_type)
        .first()
    )


def get_decrypted_credentials(db: Session, workspace_id, channel_type: str) -> dict[str, str]:
    """Plaintext credentials for one call. Callers must not keep them around."""
    channel = get_channel(db, workspace_id, channel_type)
    if channel is None:
        raise ChannelNotFound(f"{channel_type} channel not found")
    if not channel.credentials:
        return {}
    return decrypt_credentials(channel.credentials)


def upsert_channel(
    db: Session,
    workspace_id,
    channel_type: str,
    credentials: dict[str, str],
    is_active: bool = True,
) -> Channel:
    channel = get_channel(db, workspace_id, channel_type)
    if channel is None:
        channel = Channel(workspace_id=workspace_id, type=channel_type)
        db.add(channel)
    channel.credentials = encrypt_credentials(credentials)
    channel.is_active = is_active
    db.flush()
    logger.info(f"Channel saved: workspace={workspace_id}, type={channel_type}")
    return channel
