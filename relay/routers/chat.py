"""Web widget chat: batch replies and SSE token streaming."""

import asyncio
import json
import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from relay.context import AppContext, get_app_context
from relay.errors import AppError
from relay.logging_config import get_logger
from relay.models.enums import ChannelType, MessageRole
from relay.schemas.chat import ChatMessage, ChatRequest, ChatResponse
from relay.services.dispatcher import GENERIC_APOLOGY, fallback_reply, resolve_from_slug
from relay.services.llm import StreamSink
from relay.services.pipeline import InboundMessage, PipelineResult

logger = get_logger("chat")

router = APIRouter(prefix="/v1/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
DISCONNECT_POLL_SECONDS = 0.25


def _log_detached_failure(future) -> None:
    """Log a pipeline failure that no client is left to receive."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(f"Chat stream pipeline failed after disconnect: {exc}", exc_info=exc)


def _build_inbound(ctx: AppContext, slug: str, body: ChatRequest) -> InboundMessage:
    with ctx.session_factory() as db:
        target = resolve_from_slug(db, slug, ChannelType.WEB.value)
    return InboundMessage(
        workspace_id=target.workspace_id,
        agent_id=target.agent_id,
        channel_type=ChannelType.WEB.value,
        external_id=f"web-{uuid.uuid4()}",
        customer_id=body.customer_id,
        customer_name=body.customer_name,
        content=body.content.strip(),
        metadata=body.metadata,
    )


def _to_response(result: PipelineResult) -> ChatResponse:
    message = result.message
    return ChatResponse(
        conversation_id=result.conversation_id,
        message=ChatMessage(
            id=message.id,
            role=message.role,
            content=message.content,
            confidence=message.confidence,
            latency_ms=message.latency_ms,
            tokens=message.tokens,
        ),
    )


def _sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


@router.post("/{slug}")
def chat(slug: str, body: ChatRequest, ctx: AppContext = Depends(get_app_context)):
    inbound = _build_inbound(ctx, slug, body)
    try:
        result = ctx.dispatcher.run(inbound)
    except Exception as e:
        content = fallback_reply(e, ChannelType.WEB.value)
        if content is None:
            raise
        if isinstance(e, AppError):
            logger.warning(f"Chat dispatch failed: {e.code}")
        else:
            logger.error(f"Chat dispatch failed: {e}", exc_info=e)
        fallback = ChatResponse(
            conversation_id=None,
            message=ChatMessage(
                id=f"fallback-{uuid.uuid4()}",
                role=MessageRole.ASSISTANT.value,
                content=content,
                confidence=1.0,
                latency_ms=0,
            ),
        )
        return fallback.model_dump(by_alias=True)

    return _to_response(result).model_dump(by_alias=True)


@router.post("/{slug}/stream")
async def chat_stream(slug: str, body: ChatRequest, request: Request, ctx: AppContext = Depends(get_app_context)):
    """Stream the reply as SSE: `token` events with deltas, then `done` or `error`.

    A client disconnect cancels the sink; the pipeline still stores and bills
    the partial reply.
    """
    inbound = _build_inbound(ctx, slug, body)
    loop = asyncio.get_running_loop()
    deltas: asyncio.Queue = asyncio.Queue()
    sink = StreamSink(lambda delta: loop.call_soon_threadsafe(deltas.put_nowait, delta))

    async def event_stream():
        future = loop.run_in_executor(None, ctx.dispatcher.run, inbound, sink)
        collected = False
        try:
            while not future.done() or not deltas.empty():
                if await request.is_disconnected():
                    logger.info("Chat stream client disconnected, cancelling")
                    sink.cancel()
                    return
                try:
                    delta = await asyncio.wait_for(deltas.get(), timeout=DISCONNECT_POLL_SECONDS)
                except asyncio.TimeoutError:
                    continue
                yield _sse("token", {"delta": delta})

            collected = True
            try:
                result = future.result()
            except Exception as e:
                code = e.code if isinstance(e, AppError) else "INTERNAL_ERROR"
                logger.error(f"Chat stream failed: {e}")
                yield _sse("error", {"code": code, "message": fallback_reply(e, ChannelType.WEB.value) or GENERIC_APOLOGY})
                return

            yield _sse("done", _to_response(result).model_dump(by_alias=True))
        finally:
            sink.cancel()
            if not collected:
                future.add_done_callback(_log_detached_failure)

    return StreamingResponse(event_stream(), media_type="text/event-stream; charset=utf-8", headers=SSE_HEADERS)
