"""Outbound Telegram posting through the Bot API over plain HTTP.

Used from the scheduler thread, so it stays synchronous and does not touch
the polling bot's event loop.
"""

import html
import logging
from typing import Dict, Optional

import requests

from platforms.base_platform import TRUNCATION_MARKER, BaseChannel, TipCard, format_tip

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/{method}"
REQUEST_TIMEOUT = 10


def escape_within(text: str, max_length: int) -> str:
    """HTML-escape text, cutting so the escaped result fits max_length.

    The cut happens between source characters, never inside an entity.
    """
    escaped = html.escape(text)
    if len(escaped) <= max_length:
        return escaped
    room = max_length - len(TRUNCATION_MARKER)
    if room <= 0:
        return ""
    pieces, used = [], 0
    for ch in text:
        piece = html.escape(ch)
        if used + len(piece) > room:
            break
        pieces.append(piece)
        used += len(piece)
    return "".join(pieces) + TRUNCATION_MARKER


def render_card_html(card: TipCard, max_length: int) -> str:
    """Telegram has no embeds; a card becomes an HTML-formatted message.

    Title, fields and timestamp are kept; the description gets whatever
    room the markup leaves.
    """
    head = [f"<b>{html.escape(card.title)}</b>", ""]
    tail = []
    if card.fields:
        tail.append("")
        for name, value in card.fields:
            tail.append(f"<b>{html.escape(name)}:</b> {html.escape(value)}")
    tail.append(f"<i>{card.timestamp.strftime('%Y-%m-%d %H:%M UTC')}</i>")

    markup = len("\n".join(head + [""] + tail))
    budget = max_length - markup
    if budget <= len(TRUNCATION_MARKER):
        # Markup alone does not fit; send the description on its own.
        return escape_within(card.description, max_length)
    return "\n".join(head + [escape_within(card.description, budget)] + tail)


class TelegramChannel(BaseChannel):
    """Posts tips to one Telegram chat."""

    def __init__(self, config: Dict, session: Optional[requests.Session] = None):
        super().__init__(config)
        self.token = config.get("bot_token", "")
        self.chat_id = str(config.get("chat_id", ""))
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.token) and not self.token.startswith("YOUR_")

    def _call(self, method: str, payload: Optional[Dict] = None) -> bool:
        if not self.configured:
            logger.warning("Telegram bot token not configured")
            return False
        url = API_URL.format(token=self.token, method=method)
        try:
            resp = self.session.post(url, json=payload or {}, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            logger.error(f"Telegram {method} error: {e}")
            return False
        if resp.status_code != 200:
            logger.warning(f"Telegram {method} failed ({resp.status_code}): {resp.text[:200]}")
            return False
        return True

    def send_text(self, text: str, chat_id: Optional[str] = None) -> bool:
        return self._call("sendMessage", {
            "chat_id": chat_id or self.chat_id,
            "text": format_tip(text, self.max_length),
        })

    def send_card(self, card: TipCard, chat_id: Optional[str] = None) -> bool:
        return self._call("sendMessage", {
            "chat_id": chat_id or self.chat_id,
            "text": render_card_html(card, self.max_length),
            "parse_mode": "HTML",
        })

    def test_connection(self) -> bool:
        ok = self._call("getMe")
        if ok:
            logger.info("Telegram bot API reachable")
        return ok
