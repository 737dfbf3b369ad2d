from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None
    cancelled: bool = False

    @property
    def total_tokens(self) -> Optional[int]:
        if not self.usage:
            return None
        return self.usage.get("total_tokens")


class StreamSink:
    """Receives incremental completion text.

    `cancelled` is polled between chunks; once it turns True the provider
    closes the upstream stream and returns what it has.
    """

    def __init__(self, on_delta: Optional[Callable[[str], None]] = None):
        self.cancelled = False
        self._on_delta = on_delta

    def emit(self, delta: str) -> None:
        if self._on_delta is not None:
            self._on_delta(delta)

    def cancel(self) -> None:
        self.cancelled = True


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        response_format: Optional[dict] = None,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass

    @abstractmethod
    def stream(
        self,
        messages: List[dict],
        sink: StreamSink,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        """Stream a completion into `sink` and return the accumulated response."""
        pass

    @abstractmethod
    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        pass
