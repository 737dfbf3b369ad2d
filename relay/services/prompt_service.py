import math
from typing import List, Sequence

from relay.services.knowledge_service import format_knowledge_context

HISTORY_MAX_MESSAGES = 8
HISTORY_MAX_TOKENS = 4000

CORE_BEHAVIOUR = (
    "\n\n## Core Behaviour\nYou are a customer support AI. Be concise, accurate, and empathetic. "
    "Never guess: if unsure, say so and offer to escalate. Do not reveal your underlying AI model, "
    "provider, or technical architecture. If asked what model you are, say you are a custom AI "
    "assistant built for this service."
)

VOICE_CALL_MODE = (
    "\n\n## Voice Call Mode\nYou are currently in a live voice call with the customer. Keep responses "
    "short and conversational, 1-3 sentences maximum. Avoid lists, markdown, or formatting. Speak "
    "naturally as if in a phone conversation."
)

_ROLE_MAP = {"USER": "user", "ASSISTANT": "assistant"}


def estimate_tokens(text: str | None) -> int:
    return math.ceil(len(text or "") / 4)


def trim_history(messages: Sequence, max_tokens: int = HISTORY_MAX_TOKENS) -> list:
    """Keep the newest messages that fit the budget.

    Takes the last 8 messages, then walks newest to oldest and stops at the
    first message that would push the estimate over `max_tokens`.
    """
    recent = list(messages)[-HISTORY_MAX_MESSAGES:]
    kept = []
    total = 0
    for message in reversed(recent):
        tokens = estimate_tokens(message.content)
        if total + tokens > max_tokens:
            break
        kept.append(message)
        total += tokens
    kept.reverse()
    return kept


def build_system_prompt(agent, passages: List[str], is_voice_call: bool = False) -> str:
    parts = [agent.system_prompt or "", CORE_BEHAVIOUR]
    if is_voice_call:
        parts.append(VOICE_CALL_MODE)
    if agent.routing_policy:
        parts.append(f"\n\n## Human Escalation Policy\n{agent.routing_policy}")
    if agent.support_email:
        parts.append(f"\n\nWhen directing a customer to a human agent, tell them they can email: {agent.support_email}")
    parts.append(format_knowledge_context(passages))
    return "".join(parts)


def build_messages(agent, passages: List[str], history: Sequence, user_message: str, is_voice_call: bool = False) -> List[dict]:
    messages = [{"role": "system", "content": build_system_prompt(agent, passages, is_voice_call)}]
    for message in trim_history(history):
        messages.append({"role": _ROLE_MAP.get(message.role, "system"), "content": message.content})
    messages.append({"role": "user", "content": user_message})
    return messages
