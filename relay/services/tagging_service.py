import json
from typing import Callable, List

from sqlalchemy.orm import Session

from relay.logging_config import get_logger
from relay.models.enums import CreditReason
from relay.services.conversation_service import merge_tags
from relay.services.credit_service import CreditLedger
from relay.services.llm import LLMProvider

logger = get_logger("tagging_service")

MAX_TAGS = 3
TAGGING_COST = 2

TAGGING_PROMPT = """Given the following customer conversation, select the most relevant tags from this list: {tags}.

Customer: "{user_message}"
Agent: "{ai_response}"

Return a JSON object {{"tags": [...]}} with the tag names that apply (maximum 3), or an empty list if none apply. Example: {{"tags": ["billing", "refund"]}}"""


def parse_tags(raw: str, available_tags: List[str]) -> List[str]:
    """Accepts a JSON array or {"tags": [...]}; keeps vocabulary members only, at most 3."""
    data = json.loads(raw or '{"tags": []}')
    tags = data if isinstance(data, list) else data.get("tags") or []
    valid = []
    for tag in tags:
        if isinstance(tag, str) and tag in available_tags and tag not in valid:
            valid.append(tag)
    return valid[:MAX_TAGS]


class AutoTagger:
    def __init__(self, llm: LLMProvider, session_factory: Callable[[], Session], ledger: CreditLedger):
        self.llm = llm
        self.session_factory = session_factory
        self.ledger = ledger

    def tag(self, conversation_id, workspace_id, user_message: str, ai_response: str, available_tags: List[str]) -> List[str]:
        """Classify one turn and merge the result into the conversation's tags."""
        prompt = TAGGING_PROMPT.format(
            tags=", ".join(available_tags),
            user_message=user_message[:400],
            ai_response=ai_response[:400],
        )
        response = self.llm.generate(
            [{"role": "user", "content": prompt}],
            temperature=0,
            max_tokens=80,
            response_format={"type": "json_object"},
        )

        try:
            tags = parse_tags(response.content, available_tags)
        except (ValueError, AttributeError) as e:
            logger.warning(f"Auto-tagging response parse failed: {e}", extra={"context": {"conversation_id": str(conversation_id)}})
            return []

        if not tags:
            return []

        with self.session_factory() as db:
            merged = merge_tags(db, conversation_id, tags)
            db.commit()

        try:
            self.ledger.deduct(workspace_id, TAGGING_COST, CreditReason.TAGGING_CONSUMED.value, str(conversation_id))
        except Exception as e:
            logger.warning(
                f"Auto-tagging credit deduction failed: {e}",
                extra={"context": {"workspace_id": str(workspace_id), "conversation_id": str(conversation_id)}},
            )

        logger.info(f"Conversation tagged: {tags}", extra={"context": {"conversation_id": str(conversation_id)}})
        return merged
