"""Operational alerts pushed to the ops Telegram chat.

Used wherever a failure is reported rather than surfaced: credit deductions,
detached side effects, exhausted jobs, vector-search outages. Every function is
a no-op returning False when the alert bot is not configured.
"""

from typing import Optional

import httpx

from relay.config import get_settings
from relay.logging_config import get_logger

logger = get_logger("alert_service")

TELEGRAM_API = "https://api.telegram.org"
# Telegram rejects messages above 4096 characters
MAX_ALERT_CHARS = 3500

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}* `relay`\n\n{message}"
    if context:
        lines = "\n".join(f"  {key}: {value}" for key, value in context.items() if value is not None)
        if lines:
            text += f"\n\n```\n{lines}\n```"
    if len(text) > MAX_ALERT_CHARS:
        text = text[: MAX_ALERT_CHARS - 3] + "..."
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post one alert. Returns True when Telegram accepted it."""
    settings = get_settings()
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}")
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"{TELEGRAM_API}/bot{settings.alert_bot_token}/sendMessage",
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                    "disable_web_page_preview": True,
                },
            )
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False

    if response.status_code != 200:
        logger.error(f"Alert rejected by Telegram: {response.status_code}")
        return False
    return True


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)


def report_exception(message: str, exc: BaseException, context: Optional[dict] = None) -> bool:
    """Log with traceback and forward to the ops chat."""
    logger.error(f"{message}: {exc}", exc_info=exc, extra={"context": context or {}})
    return alert_error(f"{message}: {type(exc).__name__}: {exc}", context)
