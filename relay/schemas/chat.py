from typing import Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    customer_id: str = Field(alias="customerId", min_length=1)
    content: str = Field(min_length=1)
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    metadata: dict = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class ChatMessage(BaseModel):
    id: str
    role: str
    content: str
    confidence: float
    latency_ms: int = Field(alias="latencyMs")
    tokens: Optional[int] = None

    model_config = {"populate_by_name": True}


class ChatResponse(BaseModel):
    conversation_id: Optional[str] = Field(alias="conversationId")
    message: ChatMessage

    model_config = {"populate_by_name": True}
