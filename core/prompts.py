"""Prompt builder: pure functions from (kind, context) to prompt text.

No state and no I/O. The only randomness is the seed the caller passes in,
which is written into the prompt verbatim to push sampling apart between
retries.
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from core.errors import InvalidArgument
from core.models import (
    Category,
    CategoryStats,
    Difficulty,
    Reflection,
    Tip,
)

PREVIEW_LENGTH = 100
MAX_PREVIEWS = 5
TIP_SAMPLE_SIZE = 3


class PromptKind(str, Enum):
    CATEGORY_RECOMMENDATION = "category-recommendation"
    DIFFICULTY_SELECTION = "difficulty-selection"
    FRONTEND_TIP = "frontend-tip"
    BACKEND_TIP = "backend-tip"
    FULLSTACK_TIP = "fullstack-tip"


_TIP_KINDS = {
    Category.FRONTEND: PromptKind.FRONTEND_TIP,
    Category.BACKEND: PromptKind.BACKEND_TIP,
    Category.FULLSTACK: PromptKind.FULLSTACK_TIP,
}


def tip_kind_for(category: Category) -> PromptKind:
    return _TIP_KINDS[category]


# ── Sub-topic vocabulary ─────────────────────────────────────────
# (label, keywords). First match wins, like a quick glance at the tip.
SUBTOPIC_VOCABULARY: Dict[Category, List[Tuple[str, Tuple[str, ...]]]] = {
    Category.FRONTEND: [
        ("css", ("css",)),
        ("javascript", ("javascript", "js")),
        ("react", ("react",)),
        ("vue", ("vue",)),
        ("angular", ("angular",)),
    ],
    Category.BACKEND: [
        ("database", ("database", "databas", "sql")),
        ("api", ("api",)),
        ("security", ("security", "säkerhet")),
        ("node", ("node",)),
    ],
    Category.FULLSTACK: [
        ("integration", ("integration",)),
        ("scalability", ("scalab", "skalbar")),
        ("performance", ("performance", "prestanda")),
        ("deployment", ("deploy",)),
    ],
}

# Only these sub-topics trigger an explicit "avoid" sentence.
AVOID_INSTRUCTIONS: Dict[Category, Dict[str, str]] = {
    Category.FRONTEND: {
        "css": "Avoid CSS-related tips if possible, they were covered recently.",
        "react": "Avoid React-specific tips if possible, they were covered recently.",
    },
    Category.BACKEND: {
        "database": "Avoid database-related tips if possible, they were covered recently.",
        "api": "Avoid API-specific tips if possible, they were covered recently.",
    },
    Category.FULLSTACK: {
        "integration": "Avoid integration-related tips if possible, they were covered recently.",
        "performance": "Avoid performance-tuning tips if possible, they were covered recently.",
    },
}

_TIP_OPENERS = {
    Category.FRONTEND: (
        "Give exactly 3 useful, {difficulty}-level and lesser-known tips about "
        "frontend development suitable for students this year. "
    ),
    Category.BACKEND: (
        "Give exactly 3 {difficulty}-level, educational tips about backend "
        "development suitable for students this year. "
    ),
    Category.FULLSTACK: (
        "Give exactly 3 {difficulty}-level tips, tricks, techniques or trends "
        "in fullstack development (both frontend and backend) that are "
        "relevant this year. "
    ),
}

_TIP_RULES = (
    "Each tip must be at most 2 sentences long. "
    "Finish by briefly explaining 1 {area} concept in at most 3 sentences. "
    "Answer without a greeting and keep the whole answer short. "
    "At most 12 sentences in total. Random seed: {seed}"
)


def _preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    return f"{text[:length]}..."


def _has_keyword(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}", text) is not None


def detect_subtopic(text: str, category: Category) -> Optional[str]:
    """First vocabulary label found in the tip text, or None."""
    lowered = text.lower()
    for label, keywords in SUBTOPIC_VOCABULARY[category]:
        if any(_has_keyword(lowered, kw) for kw in keywords):
            return label
    return None


def avoid_instructions(category: Category, recent_tips: Sequence[Tip]) -> List[str]:
    seen = {detect_subtopic(t.text, category) for t in recent_tips}
    return [
        sentence
        for label, sentence in AVOID_INSTRUCTIONS[category].items()
        if label in seen
    ]


# ── Builders ─────────────────────────────────────────────────────


def _format_last_sent(stats: CategoryStats) -> str:
    return stats.last_sent.strftime("%Y-%m-%d") if stats.last_sent else "never"


def _category_recommendation_prompt(context: Dict) -> str:
    stats: Dict[Category, CategoryStats] = context["category_stats"]
    recent: Dict[Category, List[Tip]] = context.get("recent_tips", {})

    lines = [
        "You are an intelligent bot deciding which kind of programming tip "
        "to give today. Based on the latest tips (below) and how often each "
        "category has appeared, choose whether today's tip should be about "
        "FRONTEND, BACKEND or FULLSTACK. Pick the category that has had the "
        "least attention recently or needs more variety. "
        "Answer ONLY with one of: FRONTEND, BACKEND or FULLSTACK.",
        "",
        "Category stats:",
    ]
    for category in Category:
        s = stats.get(category, CategoryStats())
        lines.append(
            f"{category.value.capitalize()}: {s.count} tips "
            f"(last: {_format_last_sent(s)})"
        )
    for category in Category:
        lines.append("")
        lines.append(f"Latest {category.value} tips:")
        for tip in recent.get(category, [])[:MAX_PREVIEWS]:
            lines.append(f"- {_preview(tip.text)}")
    return "\n".join(lines)


def _difficulty_selection_prompt(context: Dict) -> str:
    category: Category = context["category"]
    tips: List[Tip] = context.get("recent_tips", [])
    reflections: List[Reflection] = context.get("reflections", [])

    lines = [
        f"You are an AI agent choosing the difficulty of {category.value} tips. "
        "Based on earlier tips and reflections, choose whether today's tip "
        "should be BEGINNER, MEDIUM or ADVANCED level. Try to vary the "
        "difficulty over time, but also take into account what seems to work best.",
        "",
        "Latest tips in this category:",
    ]
    for tip in tips:
        lines.append(f"- {tip.difficulty.value}: {_preview(tip.text)}")
    lines.append("")
    lines.append("Earlier reflections:")
    for reflection in reflections:
        lines.append(f"- {_preview(reflection.reflection)}")
    lines.append("")
    lines.append("Answer ONLY with one of: BEGINNER, MEDIUM or ADVANCED.")
    return "\n".join(lines)


def _tip_prompt(category: Category, context: Dict) -> str:
    difficulty: Difficulty = context.get("difficulty", Difficulty.MEDIUM)
    recent: List[Tip] = list(context.get("recent_tips", []))[:TIP_SAMPLE_SIZE]
    avoid = " ".join(avoid_instructions(category, recent))
    return (
        _TIP_OPENERS[category].format(difficulty=difficulty.value)
        + (avoid + " " if avoid else "")
        + _TIP_RULES.format(area=category.value, seed=context["seed"])
    )


def build_prompt(kind, context: Dict) -> str:
    """Build the prompt for `kind`.

    Context keys by kind:
      category-recommendation: category_stats, recent_tips (per category)
      difficulty-selection: category, recent_tips, reflections
      *-tip: difficulty, seed, recent_tips

    Raises InvalidArgument for an unknown kind.
    """
    try:
        kind = PromptKind(kind)
    except ValueError:
        raise InvalidArgument(f"Unknown prompt kind: {kind!r}")

    if kind == PromptKind.CATEGORY_RECOMMENDATION:
        return _category_recommendation_prompt(context)
    if kind == PromptKind.DIFFICULTY_SELECTION:
        return _difficulty_selection_prompt(context)
    for category, tip_kind in _TIP_KINDS.items():
        if kind == tip_kind:
            return _tip_prompt(category, context)
    raise InvalidArgument(f"Unhandled prompt kind: {kind!r}")


def build_verification_prompt(
    candidate: str,
    category: Category,
    previous_tips: Sequence[str],
    difficulty: Optional[Difficulty] = None,
) -> str:
    previous = "\n".join(f"{i}. {t}" for i, t in enumerate(previous_tips, 1))
    criteria = [
        "1. UNIQUENESS: Is the tip different enough from earlier tips? "
        "(1 = duplicate, 10 = entirely new information)",
        f"2. RELEVANCE: Is the tip relevant for {category.value} developers today? "
        "(1 = irrelevant, 10 = very relevant)",
        "3. CORRECTNESS: Is the content technically correct? "
        "(1 = wrong, 10 = fully correct)",
    ]
    fields = ['"uniqueness": x', '"relevance": x', '"correctness": x']
    if difficulty:
        criteria.append(
            f'4. DIFFICULTY: Does it match the level "{difficulty.value}"? '
            "(1 = wrong level, 10 = perfect level)"
        )
        fields.append('"difficulty_match": x')
    fields += ['"total_score": x', '"approved": true/false',
               '"reason": "short explanation of the decision"']

    return (
        f"You are a reviewer of {category.value} programming tips. "
        "Decide whether the following tip is fit to send to our users.\n\n"
        f'NEW TIP:\n"""\n{candidate}\n"""\n\n'
        f"Earlier tips in the same category:\n{previous or '(none)'}\n\n"
        + (f"Difficulty: {difficulty.value}\n\n" if difficulty else "")
        + "Score the tip on a 1-10 scale for each criterion:\n"
        + "\n".join(criteria)
        + "\n\nAnswer ONLY with a JSON object in this format:\n{\n    "
        + ",\n    ".join(fields)
        + "\n}"
    )


def build_reflection_prompt(tip: str, category: Category) -> str:
    return (
        f'Analyze this {category.value} tip that was just sent: "{tip}". '
        "What was good about it? What could be improved next time? "
        "Which topics should be covered next time?"
    )


def build_reasoning_prompt(category: Category, difficulty: Difficulty) -> str:
    return (
        "You are an AI agent responsible for generating programming tips. "
        f"The chosen category is {category.value.upper()} with difficulty "
        f"{difficulty.value}. Explain what is interesting about this category and: "
        "1. Why this difficulty may be suitable? "
        "2. What kinds of concepts are worth learning in this category? "
        "3. What is the next step to improve future tips?"
    )
