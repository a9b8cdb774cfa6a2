"""Content deduplication — prevents posting the same tip twice."""

import logging

from core.database import Database
from core.models import Category

logger = logging.getLogger(__name__)


def normalize_tip(text: str) -> str:
    """Dedup key: trimmed and lowercased."""
    return (text or "").strip().lower()


class TipDeduplicator:
    """Checks generated text against stored tips of the same category.

    Exact match on the normalized text. There is no similarity scoring:
    two tips that differ by one word are different tips.
    """

    def __init__(self, db: Database):
        self.db = db

    def is_duplicate(self, text: str, category: Category) -> bool:
        normalized = normalize_tip(text)
        if not normalized:
            return False
        if self.db.tip_exists(normalized, category):
            logger.debug(f"Duplicate {category.value} tip: {normalized[:60]!r}")
            return True
        return False
