"""Tip generation: bounded retry loop with dedup, review and persistence."""

import random
import logging
from typing import Dict, List, Optional, Sequence

from core.database import Database
from core.errors import DuplicateContent, GenerationError
from core.llm_provider import LLMProvider
from core.models import (
    CATEGORY_TOPICS,
    Category,
    Difficulty,
    GenerationResult,
    GenerationStatus,
    Tip,
    Verdict,
)
from core.prompts import build_prompt, tip_kind_for
from safety.content_dedup import TipDeduplicator, normalize_tip

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
DEFAULT_TEMPERATURE = 1.5   # high, so retries diverge
SEED_RANGE = 100000


class TipGenerator:
    """Turns a prompt into a stored, vetted, unique tip.

    Each attempt: build prompt with a fresh seed → generate → normalize →
    dedup against the store → optional review → insert. The first attempt
    that clears every step wins. After MAX_ATTEMPTS the last candidate is
    handed back unsaved so the caller always has something to post.
    """

    def __init__(
        self,
        llm: LLMProvider,
        db: Database,
        verifier=None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_attempts: int = MAX_ATTEMPTS,
        topics: Optional[Dict[Category, List[str]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.llm = llm
        self.db = db
        self.dedup = TipDeduplicator(db)
        self.verifier = verifier
        self.temperature = temperature
        self.max_attempts = max(1, max_attempts)
        self.topics = topics or CATEGORY_TOPICS
        self._rng = rng or random.Random()

    def _review(
        self,
        text: str,
        category: Category,
        difficulty: Difficulty,
        previous_texts: Sequence[str],
    ) -> Verdict:
        if self.verifier is None:
            return Verdict(approved=True, reason="Verification disabled", score=0)
        return self.verifier.verify(text, category, previous_texts, difficulty)

    def generate_unique_tip(
        self,
        category: Category,
        difficulty: Difficulty = Difficulty.MEDIUM,
        recent_tips: Sequence[Tip] = (),
        previous_texts: Sequence[str] = (),
    ) -> GenerationResult:
        """Run the retry loop for one category.

        Args:
            category: Which kind of tip to write.
            difficulty: Level written into the prompt and checked by review.
            recent_tips: Memory sample used for sub-topic avoidance.
            previous_texts: Recent peers shown to the verifier.

        Raises PersistenceError (carrying the tip) if the store fails for
        a reason other than a duplicate.
        """
        last_candidate = ""
        last_verdict = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                logger.info(
                    f"Attempt {attempt}/{self.max_attempts} at a {category.value} tip..."
                )
            logger.debug(f"[{category.value}] prompting (attempt {attempt})")
            prompt = build_prompt(tip_kind_for(category), {
                "difficulty": difficulty,
                "seed": self._rng.randrange(SEED_RANGE),
                "recent_tips": list(recent_tips),
            })

            try:
                raw = self.llm.generate(prompt, temperature=self.temperature)
            except GenerationError as e:
                logger.warning(f"{category.value} generation failed: {e}")
                continue

            display = (raw or "").strip()
            normalized = normalize_tip(display)
            if not normalized:
                logger.debug("Empty generation, retrying")
                continue
            last_candidate = display

            if self.dedup.is_duplicate(normalized, category):
                continue

            logger.debug(f"[{category.value}] verifying")
            verdict = self._review(display, category, difficulty, previous_texts)
            last_verdict = verdict
            if not verdict.approved:
                logger.info(f"{category.value} tip rejected: {verdict.reason}")
                continue

            tip = Tip(
                text=normalized,
                category=category,
                difficulty=difficulty,
                topics=list(self.topics.get(category, [])),
                verification_score=verdict.score or 0,
                display_text=display,
            )
            logger.debug(f"[{category.value}] persisting")
            try:
                self.db.save_tip(tip)
            except DuplicateContent:
                # Lost a race with another writer; same as the pre-check.
                logger.debug(f"Insert rejected as duplicate: {normalized[:60]!r}")
                continue

            logger.info(
                f"Stored {difficulty.value} {category.value} tip "
                f"after {attempt} attempt(s)"
            )
            return GenerationResult(
                status=GenerationStatus.ACCEPTED,
                text=display,
                attempts=attempt,
                tip=tip,
                verdict=verdict,
            )

        if last_candidate:
            logger.warning(
                f"No unique {category.value} tip after {self.max_attempts} "
                f"attempts, returning last candidate unsaved"
            )
            return GenerationResult(
                status=GenerationStatus.EXHAUSTED,
                text=last_candidate,
                attempts=self.max_attempts,
                verdict=last_verdict,
            )

        logger.error(f"Every {category.value} attempt came back empty")
        return GenerationResult(
            status=GenerationStatus.EMPTY, attempts=self.max_attempts
        )
