"""
Telegram Notification Tools

Pushes a short HTML summary of each persisted message to every configured
chat. Chats are notified concurrently and independently: one failing chat
never cancels or delays the others, and no failure reaches the caller.
"""

import asyncio
import html
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
import structlog

from mailroute.config import get_settings
from mailroute.exceptions import NotificationError

log = structlog.get_logger()

MAX_MESSAGE_LENGTH = 4096  # Telegram sendMessage limit


def html_to_text(content: str | None) -> str:
    """Reduce an HTML body to plain text (tags stripped, whitespace collapsed)."""
    if not content:
        return ""
    text = re.sub(r"(?is)<(script|style)[^>]*>.*?</\1>", " ", content)
    text = re.sub(r"(?i)<br\s*/?>|</p>|</div>", "\n", text)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


def _format_time(created_at: int, tz_name: str) -> str:
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("notify_timezone_invalid", timezone=tz_name)
        tz = timezone.utc
    return datetime.fromtimestamp(created_at, tz).strftime("%Y-%m-%d %H:%M")


def _escape_within(text: str, limit: int) -> str:
    """html.escape(text), cut to at most `limit` characters on an entity boundary."""
    escaped = html.escape(text)
    if len(escaped) <= limit:
        return escaped
    pieces: list[str] = []
    used = 0
    for ch in text:
        piece = html.escape(ch)
        if used + len(piece) > limit:
            break
        pieces.append(piece)
        used += len(piece)
    return "".join(pieces)


def render_notification(
    *,
    subject: str,
    sender_name: str,
    sender_address: str,
    recipient: str,
    created_at: int,
    text: str,
    content: str,
    tz_name: str = "Asia/Shanghai",
) -> str:
    """
    Render the Telegram message (parse_mode=HTML).

    The body is the plain text part, or the HTML part reduced to text.
    Subject and body are cut before the message limit is reached, never
    inside an escaped entity.
    """
    meta = (
        f"<b>From:</b> {html.escape(sender_name or '')}\t&lt;{html.escape(sender_address or '')}&gt;\n"
        f"<b>To:</b> {html.escape(recipient)}\n"
        f"<b>Time:</b> {_format_time(created_at, tz_name)}\n\n"
    )
    budget = MAX_MESSAGE_LENGTH - len(meta) - len("<b></b>\n\n")
    title = _escape_within(subject or "", budget)
    body = _escape_within(text or html_to_text(content), budget - len(title))
    return f"<b>{title}</b>\n\n{meta}{body}"


async def _send_one(client: httpx.AsyncClient, url: str, chat_id: str, text: str) -> None:
    response = await client.post(
        url,
        json={"chat_id": chat_id, "parse_mode": "HTML", "text": text},
    )
    if response.is_error:
        raise NotificationError(
            target=chat_id,
            status_code=response.status_code,
            error_message=response.text[:200],
        )


async def notify_chats(
    chat_ids: list[str],
    text: str,
    *,
    token: str,
    base_url: str = "https://api.telegram.org",
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, bool]:
    """
    Send `text` to every chat concurrently.

    Returns:
        chat_id -> delivered flag
    """
    url = f"{base_url.rstrip('/')}/bot{token}/sendMessage"

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        results = await asyncio.gather(
            *(_send_one(client, url, chat_id, text) for chat_id in chat_ids),
            return_exceptions=True,
        )

    delivered: dict[str, bool] = {}
    for chat_id, result in zip(chat_ids, results):
        if isinstance(result, BaseException):
            log.error(
                "telegram_notify_failed",
                chat_id=chat_id,
                error=str(result),
                error_type=type(result).__name__,
            )
            delivered[chat_id] = False
        else:
            delivered[chat_id] = True

    log.info(
        "telegram_notify_completed",
        delivered=sum(delivered.values()),
        failed=len(delivered) - sum(delivered.values()),
    )
    return delivered


def send_notifications(
    text: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, bool]:
    """
    Notify every configured chat if Telegram push is enabled.

    Returns {} when disabled or not configured.
    """
    settings = get_settings()
    chat_ids = settings.telegram_chat_ids

    if not settings.tg_bot_enabled or not settings.tg_bot_token or not chat_ids:
        log.debug("telegram_notify_skipped")
        return {}

    return asyncio.run(
        notify_chats(
            chat_ids,
            text,
            token=settings.tg_bot_token,
            base_url=settings.telegram_api_base_url,
            timeout=settings.notify_timeout_seconds,
            transport=transport,
        )
    )
