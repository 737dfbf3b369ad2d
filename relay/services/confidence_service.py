import json
import math
from dataclasses import dataclass
from typing import List

from relay.logging_config import get_logger
from relay.services.llm import LLMProvider

logger = get_logger("confidence_service")

FACTUAL_WEIGHT = 0.45
INTENT_WEIGHT = 0.35
EMOTIONAL_WEIGHT = 0.20
DEFAULT_SCORE = 0.7

JUDGE_PROMPT = """You are a confidence evaluator for an AI customer support agent.

Rate the following AI response on three dimensions (each from 0.0 to 1.0):

1. **factual** (0.0-1.0): How factually accurate and grounded in the provided knowledge is the response?
2. **intent** (0.0-1.0): How well does the response address what the customer actually wants/needs?
3. **emotional** (0.0-1.0): How appropriate is the emotional tone? (1.0 = calm/helpful, 0.0 = hostile/frustrated customer)

Customer message: "{user_message}"
AI response: "{ai_response}"
{knowledge}
Respond with ONLY valid JSON: {{"factual": 0.0, "intent": 0.0, "emotional": 0.0}}"""


@dataclass
class ConfidenceScores:
    factual: float
    intent: float
    emotional: float
    composite: float

    @classmethod
    def neutral(cls) -> "ConfidenceScores":
        return cls(DEFAULT_SCORE, DEFAULT_SCORE, DEFAULT_SCORE, DEFAULT_SCORE)


def clamp(value: float) -> float:
    if math.isnan(value):
        return 0.5
    return min(1.0, max(0.0, value))


def _axis(raw: dict, name: str) -> float:
    value = raw.get(name)
    return clamp(float(0.5 if value is None else value))


class ConfidenceScorer:
    def __init__(self, llm: LLMProvider):
        self.llm = llm

    def score(self, user_message: str, ai_response: str, context_chunks: List[str]) -> ConfidenceScores:
        """Ask the judge model for three ratings and blend them. Never raises."""
        try:
            sample = "\n".join(context_chunks[:3])[:1500]
            prompt = JUDGE_PROMPT.format(
                user_message=user_message[:500],
                ai_response=ai_response[:1000],
                knowledge=f"Knowledge used:\n{sample}\n" if sample else "",
            )
            response = self.llm.generate(
                [{"role": "user", "content": prompt}],
                temperature=0,
                max_tokens=60,
                response_format={"type": "json_object"},
            )
            raw = json.loads(response.content or "{}")
            factual = _axis(raw, "factual")
            intent = _axis(raw, "intent")
            emotional = _axis(raw, "emotional")
            composite = FACTUAL_WEIGHT * factual + INTENT_WEIGHT * intent + EMOTIONAL_WEIGHT * emotional
            return ConfidenceScores(factual, intent, emotional, clamp(composite))
        except Exception as e:
            logger.warning(f"Confidence scoring failed, using defaults: {e}")
            return ConfidenceScores.neutral()
