"""Inbound webhooks for every messaging channel.

Async channels (WhatsApp, Telegram, Slack, email, Messenger) acknowledge
immediately and run the pipeline in a background task, replying through the
outbound sender. Twilio channels (SMS, voice) answer inline with TwiML.
"""

import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from relay.channels import CanonicalInbound, get_adapter
from relay.channels.sms import message_twiml
from relay.channels.voice import fallback_twiml, initial_twiml, no_input_twiml, response_twiml
from relay.context import AppContext, get_app_context
from relay.errors import AppError, InvalidSignature
from relay.logging_config import get_logger
from relay.models import Agent
from relay.models.enums import ChannelType
from relay.schemas.webhook import SlackChallenge, WebhookAck
from relay.services.channel_service import get_decrypted_credentials
from relay.services.dispatcher import VOICE_UNAVAILABLE, fallback_reply, resolve_from_slug
from relay.services.pipeline import InboundMessage

logger = get_logger("webhooks")

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])

SMS_UNAVAILABLE = "I'm sorry, this assistant is currently unavailable."


def _twiml(body: str) -> Response:
    return Response(content=body, media_type="text/xml")


async def _json_body(request: Request) -> tuple[bytes, Optional[dict]]:
    raw = await request.body()
    try:
        return raw, json.loads(raw or b"{}")
    except ValueError:
        logger.warning(f"Webhook payload is not valid JSON ({len(raw)} bytes)")
        return raw, None


def process_inbound(
    ctx: AppContext,
    slug: str,
    channel_type: ChannelType,
    canonical: CanonicalInbound,
    reply_metadata: Optional[dict] = None,
) -> Optional[str]:
    """Resolve the target agent, run the pipeline and push the reply out. Returns the reply sent."""
    try:
        with ctx.session_factory() as db:
            target = resolve_from_slug(db, slug, channel_type.value)
    except AppError as e:
        logger.info(f"{channel_type.value} webhook dropped: {e.code} - {e.message}")
        return None

    inbound = InboundMessage.from_canonical(canonical, target.workspace_id, target.agent_id, channel_type)
    reply = ctx.dispatcher.dispatch_or_fallback(inbound)
    if reply is None:
        return None

    metadata = {**canonical.metadata, **(reply_metadata or {})}
    try:
        ctx.sender.send_message(channel_type.value, canonical.customer_id, reply, target.workspace_id, metadata)
    except Exception as e:
        # retry already queued by the sender
        logger.error(f"{channel_type.value} reply delivery failed: {e}")
    return reply


def _twilio_verify(ctx: AppContext, request: Request, channel_type: ChannelType, workspace_id, params: dict) -> None:
    with ctx.session_factory() as db:
        credentials = get_decrypted_credentials(db, workspace_id, channel_type.value)
    auth_token = credentials.get("authToken")
    if not auth_token:
        return
    url = f"{ctx.settings.api_base_url.rstrip('/')}{request.url.path}"
    get_adapter(channel_type).verify_signature(
        b"", request.headers.get("X-Twilio-Signature"), auth_token, url=url, params=params
    )


# ── WhatsApp ──────────────────────────────────────────────────────────────────


@router.get("/{slug}/whatsapp")
def verify_whatsapp(slug: str, request: Request, ctx: AppContext = Depends(get_app_context)):
    """Meta hub verification handshake."""
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge", "")
    try:
        with ctx.session_factory() as db:
            target = resolve_from_slug(db, slug, ChannelType.WHATSAPP.value)
            credentials = get_decrypted_credentials(db, target.workspace_id, ChannelType.WHATSAPP.value)
    except AppError:
        return PlainTextResponse("Forbidden", status_code=403)

    if mode == "subscribe" and token and token == credentials.get("webhookVerifyToken"):
        return PlainTextResponse(challenge)
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/{slug}/whatsapp", response_model=WebhookAck)
async def whatsapp_webhook(
    slug: str, request: Request, background_tasks: BackgroundTasks, ctx: AppContext = Depends(get_app_context)
):
    raw, body = await _json_body(request)
    adapter = get_adapter(ChannelType.WHATSAPP)
    if ctx.settings.whatsapp_app_secret:
        adapter.verify_signature(raw, request.headers.get("X-Hub-Signature-256"), ctx.settings.whatsapp_app_secret)

    canonical = adapter.parse_inbound(body) if body is not None else None
    if canonical is None:
        return WebhookAck(message="ignored")

    background_tasks.add_task(process_inbound, ctx, slug, ChannelType.WHATSAPP, canonical)
    return WebhookAck()


# ── Telegram ──────────────────────────────────────────────────────────────────


@router.post("/{slug}/telegram", response_model=WebhookAck)
async def telegram_webhook(
    slug: str, request: Request, background_tasks: BackgroundTasks, ctx: AppContext = Depends(get_app_context)
):
    raw, body = await _json_body(request)
    adapter = get_adapter(ChannelType.TELEGRAM)
    if ctx.settings.telegram_webhook_secret:
        adapter.verify_signature(
            raw, request.headers.get("X-Telegram-Bot-Api-Secret-Token"), ctx.settings.telegram_webhook_secret
        )

    canonical = adapter.parse_inbound(body) if body is not None else None
    if canonical is None:
        return WebhookAck(message="ignored")

    background_tasks.add_task(process_inbound, ctx, slug, ChannelType.TELEGRAM, canonical)
    return WebhookAck()


# ── Slack ─────────────────────────────────────────────────────────────────────


@router.post("/{slug}/slack")
async def slack_webhook(
    slug: str, request: Request, background_tasks: BackgroundTasks, ctx: AppContext = Depends(get_app_context)
):
    raw, body = await _json_body(request)
    adapter = get_adapter(ChannelType.SLACK)
    if ctx.settings.slack_signing_secret:
        adapter.verify_signature(
            raw,
            request.headers.get("X-Slack-Signature"),
            ctx.settings.slack_signing_secret,
            timestamp=request.headers.get("X-Slack-Request-Timestamp"),
        )

    if body and body.get("type") == "url_verification":
        return SlackChallenge(challenge=body.get("challenge", ""))

    canonical = adapter.parse_inbound(body) if body is not None else None
    if canonical is None:
        return WebhookAck(message="ignored")

    background_tasks.add_task(process_inbound, ctx, slug, ChannelType.SLACK, canonical)
    return WebhookAck()


# ── Email (inbound parse) ─────────────────────────────────────────────────────


@router.post("/{slug}/email", response_model=WebhookAck)
async def email_webhook(
    slug: str, request: Request, background_tasks: BackgroundTasks, ctx: AppContext = Depends(get_app_context)
):
    form = await request.form()
    canonical = get_adapter(ChannelType.EMAIL).parse_inbound(dict(form))
    if canonical is None:
        return WebhookAck(message="ignored")

    subject = canonical.metadata.get("subject") or "Your message"
    background_tasks.add_task(
        process_inbound, ctx, slug, ChannelType.EMAIL, canonical, {"subject": f"Re: {subject}"}
    )
    return WebhookAck()


# ── Messenger ─────────────────────────────────────────────────────────────────


@router.post("/{slug}/messenger", response_model=WebhookAck)
async def messenger_webhook(
    slug: str, request: Request, background_tasks: BackgroundTasks, ctx: AppContext = Depends(get_app_context)
):
    raw, body = await _json_body(request)
    adapter = get_adapter(ChannelType.MESSENGER)
    if ctx.settings.messenger_app_secret:
        adapter.verify_signature(raw, request.headers.get("X-Hub-Signature-256"), ctx.settings.messenger_app_secret)

    canonical = adapter.parse_inbound(body) if body is not None else None
    if canonical is None:
        return WebhookAck(message="ignored")

    background_tasks.add_task(process_inbound, ctx, slug, ChannelType.MESSENGER, canonical)
    return WebhookAck()


# ── SMS (Twilio) ──────────────────────────────────────────────────────────────


@router.post("/{slug}/sms")
async def sms_webhook(slug: str, request: Request, ctx: AppContext = Depends(get_app_context)):
    params = {key: str(value) for key, value in (await request.form()).items()}
    canonical = get_adapter(ChannelType.SMS).parse_inbound(params)
    if canonical is None:
        return _twiml("<Response></Response>")

    try:
        with ctx.session_factory() as db:
            target = resolve_from_slug(db, slug, ChannelType.SMS.value)
        _twilio_verify(ctx, request, ChannelType.SMS, target.workspace_id, params)
    except InvalidSignature:
        raise
    except AppError as e:
        logger.info(f"SMS webhook dropped: {e.code}")
        return _twiml(message_twiml(fallback_reply(e, ChannelType.SMS.value) or SMS_UNAVAILABLE))

    inbound = InboundMessage.from_canonical(canonical, target.workspace_id, target.agent_id, ChannelType.SMS)
    reply = ctx.dispatcher.dispatch_or_fallback(inbound) or SMS_UNAVAILABLE
    return _twiml(message_twiml(reply))


# ── Voice (Twilio) ────────────────────────────────────────────────────────────


@router.post("/{slug}/voice")
async def voice_webhook(slug: str, request: Request, ctx: AppContext = Depends(get_app_context)):
    """Call answered: greet the caller and open the first speech gather."""
    params = {key: str(value) for key, value in (await request.form()).items()}
    try:
        with ctx.session_factory() as db:
            target = resolve_from_slug(db, slug, ChannelType.VOICE.value)
            agent = db.get(Agent, target.agent_id)
            agent_name = agent.name
        _twilio_verify(ctx, request, ChannelType.VOICE, target.workspace_id, params)
    except InvalidSignature:
        raise
    except Exception as e:
        logger.error(f"Voice webhook error: {e}")
        return _twiml(fallback_twiml(fallback_reply(e, ChannelType.VOICE.value) or VOICE_UNAVAILABLE))

    return _twiml(initial_twiml(agent_name))


@router.post("/{slug}/voice/turn")
async def voice_turn_webhook(slug: str, request: Request, ctx: AppContext = Depends(get_app_context)):
    """One speech-recognition turn: answer and gather again."""
    params = {key: str(value) for key, value in (await request.form()).items()}
    canonical = get_adapter(ChannelType.VOICE).parse_inbound(params)
    if canonical is None:
        return _twiml(no_input_twiml())

    try:
        with ctx.session_factory() as db:
            target = resolve_from_slug(db, slug, ChannelType.VOICE.value)
            tts_voice = db.get(Agent, target.agent_id).tts_voice
        _twilio_verify(ctx, request, ChannelType.VOICE, target.workspace_id, params)

        inbound = InboundMessage.from_canonical(canonical, target.workspace_id, target.agent_id, ChannelType.VOICE)
        result = ctx.dispatcher.dispatch(inbound)
    except InvalidSignature:
        raise
    except Exception as e:
        logger.error(f"Voice turn error: {e}")
        return _twiml(fallback_twiml(fallback_reply(e, ChannelType.VOICE.value) or VOICE_UNAVAILABLE))

    return _twiml(response_twiml(result.content, tts_voice))
