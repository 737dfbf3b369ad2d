"""Escalation of AI conversations to humans.

The decision is a pure function of agent config, confidence and the raw
customer text. Routing persists the Handoff first, then tries exactly one
destination; ticketing failures fall back to an email notification.
"""

import html
import re
from typing import Callable, Mapping, Optional

import httpx
from sqlalchemy.orm import Session

from relay.errors import MissingCredentials, TicketingError
from relay.logging_config import get_logger
from relay.models import Agent, Conversation, Handoff
from relay.models.enums import (
    TICKETING_DESTINATIONS,
    ConversationStatus,
    HandoffDestination,
    HandoffTrigger,
    MemberRole,
    MessageRole,
)
from relay.services.alert_service import report_exception
from relay.services.channel_service import get_decrypted_credentials
from relay.services.confidence_service import ConfidenceScores
from relay.services.conversation_service import save_message
from relay.services.email_service import EmailService, first_member_email
from relay.services.llm import LLMProvider
from relay.services.realtime_service import RealtimePublisher

logger = get_logger("handoff_service")

DEFAULT_THRESHOLD = 0.65
ANGER_FLOOR = 0.25
TICKET_TAG = "relay-ai-handoff"

_TARGETS = r"(?:a |an )?(human|person|agent|representative|rep)"
HANDOFF_PATTERNS = (
    re.compile(rf"speak.*to.*{_TARGETS}", re.IGNORECASE),
    re.compile(rf"talk.*to.*{_TARGETS}", re.IGNORECASE),
    re.compile(r"(?:real|actual|live)\s+(person|human|agent)", re.IGNORECASE),
    re.compile(r"connect.*(?:human|agent)", re.IGNORECASE),
    re.compile(r"escalate", re.IGNORECASE),
    re.compile(r"transfer.*(?:me|call)", re.IGNORECASE),
)

SUMMARY_PROMPT = (
    "Summarize this customer support conversation in 2-3 sentences for a live agent handoff. "
    "Focus on the customer's issue and what was attempted.\n\nCustomer: {user_message}\nAI Agent: {ai_response}"
)


def is_explicit_request(text: str) -> bool:
    return any(pattern.search(text) for pattern in HANDOFF_PATTERNS)


def decide_handoff(agent: Agent, scores: ConfidenceScores, text: str) -> bool:
    if not agent.handoff_enabled:
        return False
    if is_explicit_request(text):
        return True
    if scores.emotional < ANGER_FLOOR:
        return True
    threshold = agent.handoff_threshold if agent.handoff_threshold is not None else DEFAULT_THRESHOLD
    return scores.composite < threshold


def classify_trigger(scores: ConfidenceScores, text: str) -> HandoffTrigger:
    if is_explicit_request(text):
        return HandoffTrigger.EXPLICIT_REQUEST
    if scores.emotional < ANGER_FLOOR:
        return HandoffTrigger.ANGER_DETECTED
    return HandoffTrigger.LOW_CONFIDENCE


def fallback_summary(user_message: str) -> str:
    return f'Customer requested assistance. Last message: "{user_message[:300]}"'


def _customer_label(conversation: Conversation) -> str:
    return conversation.customer_name or conversation.customer_id


def _customer_email(conversation: Conversation, default: str) -> str:
    return conversation.customer_id if "@" in conversation.customer_id else default


def _require(credentials: Mapping[str, str], provider: str, *keys: str) -> None:
    missing = [key for key in keys if not credentials.get(key)]
    if missing:
        raise MissingCredentials(f"{provider} credentials missing: {', '.join(missing)}")


def _post_ticket(provider: str, url: str, auth: tuple, payload: dict) -> dict:
    try:
        with httpx.Client(timeout=15.0) as client:
            response = client.post(url, auth=auth, json=payload)
    except httpx.HTTPError as e:
        raise TicketingError(f"{provider} request failed: {e}") from e
    if response.status_code >= 300:
        raise TicketingError(f"{provider} API error: {response.status_code} {response.text[:300]}")
    return response.json()


def create_zendesk_ticket(credentials: Mapping[str, str], conversation: Conversation, summary: str) -> str:
    _require(credentials, "Zendesk", "subdomain", "email", "apiToken")
    data = _post_ticket(
        "Zendesk",
        f"https://{credentials['subdomain']}.zendesk.com/api/v2/tickets.json",
        (f"{credentials['email']}/token", credentials["apiToken"]),
        {
            "ticket": {
                "subject": f"AI Handoff: {_customer_label(conversation)}",
                "comment": {"body": summary},
                "requester": {"name": conversation.customer_name or "Customer", "email": conversation.customer_id},
                "tags": [TICKET_TAG],
                "priority": "normal",
            }
        },
    )
    return str((data.get("ticket") or {}).get("id") or "")


def create_freshdesk_ticket(credentials: Mapping[str, str], conversation: Conversation, summary: str) -> str:
    _require(credentials, "Freshdesk", "subdomain", "apiKey")
    data = _post_ticket(
        "Freshdesk",
        f"https://{credentials['subdomain']}.freshdesk.com/api/v2/tickets",
        (credentials["apiKey"], "X"),
        {
            "subject": f"AI Handoff: {_customer_label(conversation)}",
            "description": summary,
            "email": _customer_email(conversation, f"{conversation.customer_id}@unknown.com"),
            "priority": 2,
            "status": 2,
            "tags": [TICKET_TAG],
        },
    )
    return str(data.get("id") or "")


def create_gorgias_ticket(credentials: Mapping[str, str], conversation: Conversation, summary: str) -> str:
    _require(credentials, "Gorgias", "domain", "email", "apiKey")
    data = _post_ticket(
        "Gorgias",
        f"https://{credentials['domain']}.gorgias.com/api/tickets",
        (credentials["email"], credentials["apiKey"]),
        {
            "subject": f"AI Handoff: {_customer_label(conversation)}",
            "messages": [
                {
                    "channel": "email",
                    "via": "api",
                    "from_agent": False,
                    "body_text": summary,
                    "sender": {"email": _customer_email(conversation, "customer@unknown.com")},
                }
            ],
            "tags": [{"name": TICKET_TAG}],
        },
    )
    return str(data.get("id") or "")


TICKET_PROVIDERS = {
    HandoffDestination.ZENDESK: create_zendesk_ticket,
    HandoffDestination.FRESHDESK: create_freshdesk_ticket,
    HandoffDestination.GORGIAS: create_gorgias_ticket,
}


class HandoffRouter:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        llm: LLMProvider,
        realtime: RealtimePublisher,
        email: EmailService,
    ):
        self.session_factory = session_factory
        self.llm = llm
        self.realtime = realtime
        self.email = email

    def summarize(self, user_message: str, ai_response: str) -> str:
        try:
            response = self.llm.generate(
                [{"role": "user", "content": SUMMARY_PROMPT.format(user_message=user_message, ai_response=ai_response)}],
                temperature=0.3,
                max_tokens=150,
            )
            return response.content or fallback_summary(user_message)
        except Exception as e:
            logger.warning(f"Handoff summary generation failed, using fallback: {e}")
            return fallback_summary(user_message)

    def trigger(self, agent_id, conversation_id, scores: ConfidenceScores, user_message: str, ai_response: str) -> Handoff:
        trigger = classify_trigger(scores, user_message)
        summary = self.summarize(user_message, ai_response)

        with self.session_factory() as db:
            agent = db.get(Agent, agent_id)
            conversation = db.get(Conversation, conversation_id)
            destination = HandoffDestination(agent.handoff_dest or HandoffDestination.NONE.value)

            handoff = Handoff(
                conversation_id=conversation.id,
                trigger=trigger.value,
                confidence=scores.composite,
                summary=summary,
                destination=destination.value,
            )
            db.add(handoff)
            conversation.status = ConversationStatus.HANDED_OFF.value
            save_message(
                db,
                conversation.id,
                MessageRole.SYSTEM.value,
                f"Conversation handed off. Trigger: {trigger.value}. Destination: {destination.value}.",
            )
            db.commit()

            logger.info(
                f"Handoff created: trigger={trigger.value}, destination={destination.value}",
                extra={"context": {"conversation_id": str(conversation.id), "handoff_id": str(handoff.id)}},
            )

            self.realtime.emit_to_workspace(
                conversation.workspace_id,
                "handoff:created",
                {
                    "handoffId": str(handoff.id),
                    "conversationId": str(conversation.id),
                    "trigger": trigger.value,
                    "destination": destination.value,
                    "summary": summary,
                },
            )
            self.realtime.emit_to_conversation(
                conversation.id,
                "handoff:initiated",
                {"trigger": trigger.value, "destination": destination.value},
            )

            self.route(db, agent, conversation, handoff, destination)
        return handoff

    def route(self, db: Session, agent: Agent, conversation: Conversation, handoff: Handoff, destination: HandoffDestination) -> None:
        if destination not in TICKETING_DESTINATIONS:
            self._notify_by_email(db, agent, conversation, handoff)
            return

        try:
            credentials = get_decrypted_credentials(db, conversation.workspace_id, destination.value)
            ticket_id = TICKET_PROVIDERS[destination](credentials, conversation, handoff.summary)
        except Exception as e:
            report_exception(
                "Handoff destination routing failed",
                e,
                {"destination": destination.value, "handoff_id": str(handoff.id)},
            )
            self._notify_by_email(db, agent, conversation, handoff)
            return

        handoff.external_ticket_id = ticket_id
        db.commit()
        logger.info(f"Handoff ticket created: {destination.value} #{ticket_id}")

    def _notify_by_email(self, db: Session, agent: Agent, conversation: Conversation, handoff: Handoff) -> bool:
        if not self.email.configured:
            logger.warning("Handoff email skipped: Resend is not configured")
            return False
        try:
            recipient = first_member_email(db, conversation.workspace_id, [MemberRole.OWNER.value, MemberRole.ADMIN.value])
            if not recipient:
                logger.warning(f"Handoff email skipped: no owner/admin for workspace {conversation.workspace_id}")
                return False
            self.email.send(
                recipient,
                f"[Handoff] Customer needs assistance - {agent.name}",
                render_handoff_email(agent, conversation, handoff, self.email.frontend_url),
            )
            return True
        except Exception as e:
            logger.warning(f"Handoff email notification failed: {e}", extra={"context": {"handoff_id": str(handoff.id)}})
            return False


def render_handoff_email(agent: Agent, conversation: Conversation, handoff: Handoff, frontend_url: str) -> str:
    confidence = (handoff.confidence or 0) * 100
    esc = html.escape
    return (
        "<h2>Customer Handoff Required</h2>"
        f"<p><strong>Agent:</strong> {esc(agent.name)}</p>"
        f"<p><strong>Customer:</strong> {esc(_customer_label(conversation))}</p>"
        f"<p><strong>Channel:</strong> {esc(conversation.channel_type)}</p>"
        f"<p><strong>Trigger:</strong> {esc(handoff.trigger)}</p>"
        f"<p><strong>Confidence:</strong> {confidence:.1f}%</p>"
        "<hr />"
        "<h3>Conversation Summary</h3>"
        f"<p>{esc(handoff.summary or '')}</p>"
        "<hr />"
        f'<p><a href="{frontend_url}/conversations/{conversation.id}">View Conversation</a></p>'
    )
