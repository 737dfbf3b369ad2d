import json
import re
from typing import List, Optional

import httpx

from relay.errors import CompletionError
from relay.logging_config import get_logger
from relay.services.llm.base import LLMProvider, LLMResponse, StreamSink

logger = get_logger("llm.openai")

_MAX_COMPLETION_TOKENS_MODELS = re.compile(r"^gpt-5", re.IGNORECASE)

EMBEDDING_INPUT_LIMIT = 8000


def with_token_budget(payload: dict, max_tokens: int) -> dict:
    """Attach the token budget under the parameter name the model accepts."""
    if _MAX_COMPLETION_TOKENS_MODELS.match(payload["model"]):
        return {**payload, "max_completion_tokens": max_tokens}
    return {**payload, "max_tokens": max_tokens}


class OpenAIProvider(LLMProvider):
    """OpenAI API provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-5-nano",
        base_url: str = "https://api.openai.com/v1",
        embedding_model: str = "text-embedding-3-small",
        timeout_seconds: float = 60.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.embedding_model = embedding_model
        self.timeout_seconds = timeout_seconds
        self.base_url = f"{base_url.rstrip('/')}/chat/completions"
        self.embeddings_url = f"{base_url.rstrip('/')}/embeddings"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        response_format: Optional[dict] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {"model": model, "messages": messages, "temperature": temperature}
        if response_format:
            payload["response_format"] = response_format
        payload = with_token_budget(payload, max_tokens)

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(self.base_url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise CompletionError(f"OpenAI request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.status_code} - {response.text}")
            raise CompletionError(f"OpenAI API error: {response.status_code} - {response.text}")

        data = response.json()
        content = ""
        if data.get("choices"):
            content = data["choices"][0].get("message", {}).get("content") or ""
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))

    def stream(
        self,
        messages: List[dict],
        sink: StreamSink,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = with_token_budget(
            {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "stream": True,
                "stream_options": {"include_usage": True},
            },
            max_tokens,
        )

        parts: List[str] = []
        usage = None
        cancelled = False
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                with client.stream("POST", self.base_url, headers=self._headers(), json=payload) as response:
                    if response.status_code != 200:
                        body = response.read().decode("utf-8", errors="replace")
                        logger.error(f"OpenAI stream error: {response.status_code} - {body}")
                        raise CompletionError(f"OpenAI API error: {response.status_code} - {body}")

                    for line in response.iter_lines():
                        if sink.cancelled:
                            cancelled = True
                            break
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        chunk = json.loads(data)
                        if chunk.get("usage"):
                            usage = chunk["usage"]
                        for choice in chunk.get("choices") or []:
                            delta = (choice.get("delta") or {}).get("content")
                            if delta:
                                parts.append(delta)
                                sink.emit(delta)
        except httpx.HTTPError as e:
            raise CompletionError(f"OpenAI stream failed: {e}") from e

        if cancelled:
            logger.info(f"OpenAI stream cancelled after {len(parts)} chunks")
        return LLMResponse(content="".join(parts), model=model, usage=usage, cancelled=cancelled)

    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        payload = {"model": model or self.embedding_model, "input": text[:EMBEDDING_INPUT_LIMIT]}
        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.post(self.embeddings_url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise CompletionError(f"OpenAI embeddings request failed: {e}") from e

        if response.status_code != 200:
            raise CompletionError(f"OpenAI embeddings error: {response.status_code} - {response.text}")
        return response.json()["data"][0]["embedding"]
