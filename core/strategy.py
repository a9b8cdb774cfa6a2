"""Selection strategy: which category and difficulty to generate next.

Three interchangeable category policies:
- weekday: fixed rotation, used for the scheduled post
- random: uniform pick, used for "surprise me" commands
- history: asks the model which category has been neglected

Model answers are matched against the closed sets; anything else falls back
to frontend / medium instead of failing the post.
"""

import random
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from core.errors import GenerationError, InvalidArgument, SelectionError
from core.llm_provider import LLMProvider
from core.models import AgentMemory, Category, Difficulty, DEFAULT_DIFFICULTY
from core.prompts import MAX_PREVIEWS, PromptKind, build_prompt

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = Category.FRONTEND
SELECTION_TEMPERATURE = 0.4

# Monday = 0 … Sunday = 6
WEEKDAY_ROTATION = (
    Category.FRONTEND,   # Mon
    Category.BACKEND,    # Tue
    Category.FULLSTACK,  # Wed
    Category.FRONTEND,   # Thu
    Category.BACKEND,    # Fri
    Category.FRONTEND,   # Sat
    Category.FULLSTACK,  # Sun
)


def weekday_category(weekday: int) -> Category:
    """Category for a weekday number (Monday = 0). Total over all ints."""
    return WEEKDAY_ROTATION[weekday % 7]


def parse_category(answer: str) -> Category:
    """Match a one-word model answer. Raises SelectionError."""
    token = (answer or "").strip().strip(".!*`\"'").lower()
    try:
        return Category(token)
    except ValueError:
        raise SelectionError(f"Invalid category recommendation: {answer!r}")


def parse_difficulty(answer: str) -> Difficulty:
    """Case-insensitive substring match on every alias.

    Beginner and advanced are checked before medium so an answer that
    mentions both ("not beginner, medium") still picks a level mentioned.
    Raises SelectionError when no keyword is found.
    """
    lowered = (answer or "").lower()
    for level in (Difficulty.BEGINNER, Difficulty.ADVANCED, Difficulty.MEDIUM):
        if any(alias in lowered for alias in level.aliases):
            return level
    raise SelectionError(f"No difficulty keyword in answer: {answer!r}")


# ── Category policies ────────────────────────────────────────────


class CategoryPolicy(ABC):
    name = ""

    @abstractmethod
    def choose(self, memory: AgentMemory) -> Category:
        ...


class WeekdayRotationPolicy(CategoryPolicy):
    name = "weekday"

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    def choose(self, memory: AgentMemory) -> Category:
        return weekday_category(self.clock().weekday())


class RandomCategoryPolicy(CategoryPolicy):
    name = "random"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def choose(self, memory: AgentMemory) -> Category:
        return self.rng.choice(list(Category))


class HistoryCategoryPolicy(CategoryPolicy):
    """Ask the model which category needs attention, given recent history."""

    name = "history"

    def __init__(self, llm: LLMProvider, temperature: float = SELECTION_TEMPERATURE):
        self.llm = llm
        self.temperature = temperature

    def choose(self, memory: AgentMemory) -> Category:
        prompt = build_prompt(PromptKind.CATEGORY_RECOMMENDATION, {
            "category_stats": memory.category_stats,
            "recent_tips": {
                c: memory.tips_for(c, MAX_PREVIEWS) for c in Category
            },
        })
        try:
            answer = self.llm.generate(prompt, temperature=self.temperature)
            category = parse_category(answer)
        except (GenerationError, SelectionError) as e:
            logger.warning(f"{e} — falling back to {DEFAULT_CATEGORY.value}")
            return DEFAULT_CATEGORY
        logger.info(f"Agent recommends category: {category.value}")
        return category


POLICIES = {
    WeekdayRotationPolicy.name: WeekdayRotationPolicy,
    RandomCategoryPolicy.name: RandomCategoryPolicy,
    HistoryCategoryPolicy.name: HistoryCategoryPolicy,
}


def build_policy(name: str, llm: Optional[LLMProvider] = None) -> CategoryPolicy:
    """Instantiate a policy by config name."""
    if name == HistoryCategoryPolicy.name:
        if llm is None:
            raise InvalidArgument("history policy needs an LLM provider")
        return HistoryCategoryPolicy(llm)
    if name not in POLICIES:
        raise InvalidArgument(
            f"Unknown selection policy {name!r} (choose from {sorted(POLICIES)})"
        )
    return POLICIES[name]()


# ── Difficulty ───────────────────────────────────────────────────


class DifficultySelector:
    """Ask the model for a level based on recent tips and reflections."""

    def __init__(
        self,
        llm: LLMProvider,
        temperature: float = SELECTION_TEMPERATURE,
        sample_size: int = 7,
    ):
        self.llm = llm
        self.temperature = temperature
        self.sample_size = sample_size

    def choose(self, category: Category, memory: AgentMemory) -> Difficulty:
        prompt = build_prompt(PromptKind.DIFFICULTY_SELECTION, {
            "category": category,
            "recent_tips": memory.tips_for(category, self.sample_size),
            "reflections": memory.reflections_for(category, 3),
        })
        try:
            answer = self.llm.generate(prompt, temperature=self.temperature)
            difficulty = parse_difficulty(answer)
        except (GenerationError, SelectionError) as e:
            logger.warning(f"{e} — using {DEFAULT_DIFFICULTY.value}")
            return DEFAULT_DIFFICULTY
        logger.info(f"Agent recommends difficulty: {difficulty.value}")
        return difficulty
