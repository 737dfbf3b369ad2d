from relay.services.llm.base import LLMProvider, LLMResponse, StreamSink
from relay.services.llm.openai_provider import OpenAIProvider, with_token_budget

__all__ = ["LLMProvider", "LLMResponse", "StreamSink", "OpenAIProvider", "with_token_budget"]
