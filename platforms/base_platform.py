"""Base channel interface and message formatting shared by all chat platforms."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from core.models import DailyTip, utcnow

DEFAULT_MAX_LENGTH = 2000
TRUNCATION_MARKER = "..."
EMPTY_TIP = "Could not generate a tip right now."


def format_tip(tip: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Fit a tip inside the channel's message limit.

    Texts within the limit are returned unchanged; longer ones are cut so
    the result including the marker is exactly max_length characters.
    """
    tip = tip or EMPTY_TIP
    if len(tip) <= max_length:
        return tip
    if max_length <= len(TRUNCATION_MARKER):
        return tip[:max_length]
    return tip[: max_length - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def format_message(prefix: str, tip: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Prefix line + tip, the whole message kept within max_length."""
    head = f"{prefix}\n" if prefix else ""
    if len(head) + len(TRUNCATION_MARKER) > max_length:
        # No room for the tip after the prefix; cut the composed message.
        return format_tip(head + (tip or EMPTY_TIP), max_length)
    return head + format_tip(tip, max_length - len(head))


@dataclass
class TipCard:
    """Rich rendering of a tip: title, body, key/value fields, timestamp."""

    title: str
    description: str
    fields: List[Tuple[str, str]] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_daily_tip(cls, daily: DailyTip) -> "TipCard":
        """Full tip text; the renderer fits it to the channel limit."""
        return cls(
            title=daily.prefix.rstrip(":"),
            description=daily.tip or EMPTY_TIP,
            fields=[
                ("Category", daily.category.value),
                ("Difficulty", daily.difficulty.value),
            ],
        )


class BaseChannel(ABC):
    """Common interface for outbound chat channels."""

    def __init__(self, config: Dict):
        self.config = config
        self.max_length = config.get("max_message_length", DEFAULT_MAX_LENGTH)

    @abstractmethod
    def send_text(self, text: str, chat_id: Optional[str] = None) -> bool:
        """Send plain text. Returns success."""
        ...

    @abstractmethod
    def send_card(self, card: TipCard, chat_id: Optional[str] = None) -> bool:
        """Send a rich card. Returns success."""
        ...

    @abstractmethod
    def test_connection(self) -> bool:
        """Verify credentials and connectivity."""
        ...

    def post_daily_tip(self, daily: DailyTip, as_card: bool = False) -> bool:
        if as_card:
            return self.send_card(TipCard.from_daily_tip(daily))
        return self.send_text(format_message(daily.prefix, daily.tip, self.max_length))
