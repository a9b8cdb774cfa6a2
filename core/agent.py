"""Tip agent. Composes selection, generation, review, storage and reflection.

One generate call walks these stages in order:

    selecting → generating (prompt, retry loop, review, persist) → reflecting → done

Any unexpected error drops to a fixed apology so the scheduled post or the
chat command still has something to say.
"""

import logging
from typing import Dict, Optional

from core.content_gen import TipGenerator
from core.database import Database
from core.errors import GenerationError, PersistenceError
from core.llm_provider import LLMProvider
from core.models import (
    AgentMemory,
    Category,
    DailyTip,
    Difficulty,
    DEFAULT_DIFFICULTY,
    GenerationStatus,
    Reflection,
    RECENT_TIPS_WINDOW,
    REFLECTIONS_WINDOW,
)
from core.prompts import (
    TIP_SAMPLE_SIZE,
    build_reasoning_prompt,
    build_reflection_prompt,
)
from core.strategy import (
    CategoryPolicy,
    DifficultySelector,
    HistoryCategoryPolicy,
    RandomCategoryPolicy,
)
from safety.content_dedup import normalize_tip

logger = logging.getLogger(__name__)

APOLOGY = "Something went wrong while generating the {category} tip."
NO_TIP = "Could not generate a unique {category} tip right now."
NO_REASONING = "Something went wrong while deciding what kind of tip to give."
NO_REFLECTION = "Could not reflect on the tip."

PREFIXES = {
    Category.FRONTEND: "💡 Today's {difficulty} frontend tip:",
    Category.BACKEND: "🛠️ Today's {difficulty} backend tip:",
    Category.FULLSTACK: "🌐 Today's {difficulty} fullstack tip:",
}

VERIFIER_PEERS = 5


def tip_prefix(category: Category, difficulty: Difficulty) -> str:
    return PREFIXES[category].format(difficulty=difficulty.value)


class TipAgent:
    """Generates, stores and reflects on programming tips.

    Collaborators are injected so tests can hand in stubs:
      - db: content store
      - llm: generator backend (tips, reflections, reasoning)
      - generator: retry loop; built from llm/db when omitted
      - category_policy: history-driven by default
      - difficulty_selector: model-driven by default
    """

    def __init__(
        self,
        db: Database,
        llm: LLMProvider,
        generator: Optional[TipGenerator] = None,
        category_policy: Optional[CategoryPolicy] = None,
        difficulty_selector: Optional[DifficultySelector] = None,
        max_recent_tips: int = RECENT_TIPS_WINDOW,
        max_reflections: int = REFLECTIONS_WINDOW,
    ):
        self.db = db
        self.llm = llm
        self.generator = generator or TipGenerator(llm, db)
        self.category_policy = category_policy or HistoryCategoryPolicy(llm)
        self.difficulty_selector = difficulty_selector or DifficultySelector(llm)
        self.memory = AgentMemory(
            max_tips=max_recent_tips, max_reflections=max_reflections
        )

    def initialize(self) -> "TipAgent":
        """Rebuild memory from the store. Store errors propagate."""
        self.memory.recent_tips = self.db.get_recent_tips(limit=self.memory.max_tips)
        self.memory.reflections = self.db.get_recent_reflections(
            limit=self.memory.max_reflections
        )
        self.memory.category_stats = self.db.get_category_stats()
        logger.info(
            f"Agent initialized: {len(self.memory.recent_tips)} recent tips, "
            f"{len(self.memory.reflections)} reflections"
        )
        return self

    # ── Selection ────────────────────────────────────────────────

    def recommend_category(self) -> Category:
        return self.category_policy.choose(self.memory)

    def determine_difficulty(self, category: Category) -> Difficulty:
        return self.difficulty_selector.choose(category, self.memory)

    # ── Generation ───────────────────────────────────────────────

    def generate_frontend_tip(self, difficulty: Difficulty = DEFAULT_DIFFICULTY) -> str:
        return self.generate_tip(Category.FRONTEND, difficulty)

    def generate_backend_tip(self, difficulty: Difficulty = DEFAULT_DIFFICULTY) -> str:
        return self.generate_tip(Category.BACKEND, difficulty)

    def generate_fullstack_tip(self, difficulty: Difficulty = DEFAULT_DIFFICULTY) -> str:
        return self.generate_tip(Category.FULLSTACK, difficulty)

    def generate_tip(
        self, category: Category, difficulty: Difficulty = DEFAULT_DIFFICULTY
    ) -> str:
        """Generate one tip and return the text to post.

        Never raises for runtime failures; returns a fallback string instead.
        """
        category = Category.parse(category)
        difficulty = Difficulty.parse(difficulty)
        text = ""
        logger.debug(f"[{category.value}] generating ({difficulty.value})")
        try:
            text = self._run_generation(category, difficulty)
        except Exception as e:
            logger.error(f"Error generating {category.value} tip: {e}", exc_info=True)
            return APOLOGY.format(category=category.value)
        finally:
            if text:
                logger.debug(f"[{category.value}] reflecting")
                self.self_reflect(text, category)
        logger.debug(f"[{category.value}] done")
        return text or NO_TIP.format(category=category.value)

    def _run_generation(self, category: Category, difficulty: Difficulty) -> str:
        peers = [t.text for t in self.memory.tips_for(category, VERIFIER_PEERS)]
        try:
            result = self.generator.generate_unique_tip(
                category,
                difficulty,
                recent_tips=self.memory.tips_for(category, TIP_SAMPLE_SIZE),
                previous_texts=peers,
            )
        except PersistenceError as e:
            # The text is still posted; only the row is missing.
            logger.error(f"Tip generated but not saved: {e}")
            if e.tip is None:
                raise
            return e.tip.display_text or e.tip.text

        if result.status == GenerationStatus.ACCEPTED:
            self.memory.remember_tip(result.tip)
        return result.text

    def self_reflect(self, tip: str, category: Category) -> str:
        """Ask the model to critique a tip and store the critique.

        Best-effort: failures are logged and a placeholder is returned.
        """
        normalized = normalize_tip(tip)
        try:
            text = self.llm.generate(build_reflection_prompt(tip, category))
            reflection = Reflection(tip=normalized, reflection=text, category=category)
            self.db.save_reflection(reflection)
        except Exception as e:
            logger.error(f"Error during self-reflection: {e}")
            return NO_REFLECTION
        self.memory.remember_reflection(reflection)
        return text

    def explain(self, category: Category, difficulty: Difficulty) -> str:
        """Model's reasoning about a category/difficulty choice."""
        try:
            return self.llm.generate(build_reasoning_prompt(category, difficulty))
        except GenerationError as e:
            logger.warning(f"Could not generate agent reasoning: {e}")
            return NO_REASONING

    def generate_daily_tip(
        self,
        category: Optional[Category] = None,
        include_reasoning: bool = False,
    ) -> DailyTip:
        """Today's tip: given category (weekday rotation) or the policy's pick."""
        try:
            if category is None:
                category = self.recommend_category()
                logger.info(f"Selected category: {category.value}")
            category = Category.parse(category)
            difficulty = self.determine_difficulty(category)
            tip = self.generate_tip(category, difficulty)
            thinking = self.explain(category, difficulty) if include_reasoning else ""
            return DailyTip(
                tip=tip,
                prefix=tip_prefix(category, difficulty),
                category=category,
                difficulty=difficulty,
                thinking=thinking,
            )
        except Exception as e:
            logger.error(f"Error in daily tip decision: {e}", exc_info=True)
            return DailyTip(
                tip=self.generate_tip(Category.FRONTEND, DEFAULT_DIFFICULTY),
                prefix=tip_prefix(Category.FRONTEND, DEFAULT_DIFFICULTY),
                category=Category.FRONTEND,
                difficulty=DEFAULT_DIFFICULTY,
                thinking=NO_REASONING,
            )

    def get_agent_reasoning(self) -> str:
        """Pick a category and level without generating, and explain why."""
        try:
            category = self.recommend_category()
            difficulty = self.determine_difficulty(category)
        except Exception as e:
            logger.error(f"Error while reasoning about next tip: {e}", exc_info=True)
            return NO_REASONING
        return self.explain(category, difficulty)

    def surprise(self) -> DailyTip:
        """Daily tip with a uniformly random category."""
        return self.generate_daily_tip(RandomCategoryPolicy().choose(self.memory))

    # ── Status ───────────────────────────────────────────────────

    def get_status(self) -> Dict:
        return {
            "recent_tips": len(self.memory.recent_tips),
            "reflections": len(self.memory.reflections),
            "policy": getattr(self.category_policy, "name", "custom"),
            "categories": {
                c.value: {
                    "count": s.count,
                    "last_sent": s.last_sent.isoformat() if s.last_sent else None,
                }
                for c, s in self.memory.category_stats.items()
            },
        }
