"""Domain records: categories, tips, reflections and the agent's memory."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from core.errors import InvalidArgument

RECENT_TIPS_WINDOW = 15
REFLECTIONS_WINDOW = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(str, Enum):
    FRONTEND = "frontend"
    BACKEND = "backend"
    FULLSTACK = "fullstack"

    @classmethod
    def parse(cls, value) -> "Category":
        """Case/whitespace-insensitive lookup. Raises InvalidArgument."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidArgument(f"Unknown category: {value!r}")


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    MEDIUM = "medium"
    ADVANCED = "advanced"

    @property
    def aliases(self) -> List[str]:
        """Keywords a model answer may use for this level."""
        return {
            "beginner": ["beginner", "nybörjare"],
            "medium": ["medium", "intermediate", "medel"],
            "advanced": ["advanced", "avancerad"],
        }[self.value]

    @classmethod
    def parse(cls, value) -> "Difficulty":
        if isinstance(value, cls):
            return value
        raw = str(value).strip().lower()
        for level in cls:
            if raw in level.aliases:
                return level
        raise InvalidArgument(f"Unknown difficulty: {value!r}")


DEFAULT_DIFFICULTY = Difficulty.MEDIUM

# Static illustrative tags, not derived from content.
CATEGORY_TOPICS: Dict[Category, List[str]] = {
    Category.FRONTEND: ["CSS", "JavaScript", "React"],
    Category.BACKEND: ["databases", "API", "security"],
    Category.FULLSTACK: ["integration", "scalability", "performance"],
}


@dataclass
class Tip:
    text: str
    category: Category
    difficulty: Difficulty = DEFAULT_DIFFICULTY
    topics: List[str] = field(default_factory=list)
    date: datetime = field(default_factory=utcnow)
    verification_score: float = 0
    feedback: List[str] = field(default_factory=list)
    # Raw (stripped) model output shown to users. Never stored.
    display_text: str = ""

    def preview(self, length: int = 100) -> str:
        return f"{self.text[:length]}..."


@dataclass
class Reflection:
    tip: str
    reflection: str
    category: Category
    date: datetime = field(default_factory=utcnow)


@dataclass
class CategoryStats:
    count: int = 0
    last_sent: Optional[datetime] = None

    def bump(self, when: Optional[datetime] = None):
        self.count += 1
        self.last_sent = when or utcnow()


@dataclass
class AgentMemory:
    """Process-scoped cache, rebuilt from the store at startup."""

    recent_tips: List[Tip] = field(default_factory=list)
    reflections: List[Reflection] = field(default_factory=list)
    category_stats: Dict[Category, CategoryStats] = field(
        default_factory=lambda: {c: CategoryStats() for c in Category}
    )
    max_tips: int = RECENT_TIPS_WINDOW
    max_reflections: int = REFLECTIONS_WINDOW

    def remember_tip(self, tip: Tip):
        self.recent_tips.insert(0, tip)
        del self.recent_tips[self.max_tips:]
        self.category_stats[tip.category].bump(tip.date)

    def remember_reflection(self, reflection: Reflection):
        self.reflections.insert(0, reflection)
        del self.reflections[self.max_reflections:]

    def tips_for(self, category: Category, limit: int = 5) -> List[Tip]:
        return [t for t in self.recent_tips if t.category == category][:limit]

    def reflections_for(
        self, category: Category, limit: int = 3
    ) -> List[Reflection]:
        return [r for r in self.reflections if r.category == category][:limit]


@dataclass
class Verdict:
    approved: bool
    reason: str
    score: float = 0
    scores: Dict[str, float] = field(default_factory=dict)


class GenerationStatus(str, Enum):
    ACCEPTED = "accepted"      # unique, approved and persisted
    EXHAUSTED = "exhausted"    # budget spent, last candidate returned as-is
    EMPTY = "empty"            # every attempt came back empty


@dataclass
class GenerationResult:
    status: GenerationStatus
    text: str = ""
    attempts: int = 0
    tip: Optional[Tip] = None
    verdict: Optional[Verdict] = None

    @property
    def accepted(self) -> bool:
        return self.status == GenerationStatus.ACCEPTED


@dataclass
class DailyTip:
    tip: str
    prefix: str
    category: Category
    difficulty: Difficulty
    thinking: str = ""
