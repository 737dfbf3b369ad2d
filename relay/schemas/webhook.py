from typing import Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    success: bool = True
    message: Optional[str] = None


class SlackChallenge(BaseModel):
    challenge: str
