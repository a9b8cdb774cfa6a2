"""Second-opinion quality review of generated tips.

The verifier asks a (usually stronger) model to score a candidate against
recent peers and return JSON. Model output is free text, so parsing runs
through an ordered chain of strategies, each returning None when it cannot
make sense of the answer.

The gate is advisory: if the verifier itself fails, the tip goes through.
"""

import json
import re
import logging
from typing import Callable, Dict, List, Optional, Sequence

from core.errors import VerificationError
from core.llm_provider import LLMProvider, ROLE_VERIFIER
from core.models import Category, Difficulty, Verdict
from core.prompts import build_verification_prompt

logger = logging.getLogger(__name__)

APPROVAL_THRESHOLD = 7
SUB_SCORES = ("uniqueness", "relevance", "correctness", "difficulty_match")

REJECTION_PHRASES = [
    r"\bnot approved\b",
    r"\"?approved\"?\s*[:=]\s*false\b",
    r"\brejected\b",
    r"\breject (?:this|the|it)\b",
    r"\b(?:is|looks like|appears to be) an? (?:near-)?duplicate\b",
    r"\bnot (?:suitable|appropriate)\b",
]
# A negation earlier in the same clause turns a phrase into approval.
_NEGATION_RE = re.compile(r"\b(?:not|never|no)\b|n't\b", re.IGNORECASE)
_CLAUSE_BREAK_RE = re.compile(r"[.!?;,\n]")
NEGATION_WINDOW = 30

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*?\}", re.DOTALL)


# ── Parser chain ─────────────────────────────────────────────────


def parse_direct_json(text: str) -> Optional[Dict]:
    try:
        data = json.loads(text.strip())
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def parse_fenced_json(text: str) -> Optional[Dict]:
    """Strip a ```json fence and parse what is inside."""
    match = _FENCE_RE.search(text)
    if not match:
        return None
    return parse_direct_json(match.group(1))


def parse_embedded_json(text: str) -> Optional[Dict]:
    """First {...} span in the text. Assessment objects are flat."""
    for match in _OBJECT_RE.finditer(text):
        data = parse_direct_json(match.group(0))
        if data is not None:
            return data
    return None


def _negated(text: str, start: int) -> bool:
    before = text[max(0, start - NEGATION_WINDOW):start]
    clause = _CLAUSE_BREAK_RE.split(before)[-1]
    return bool(_NEGATION_RE.search(clause))


def sniff_rejection_keywords(text: str) -> Optional[Dict]:
    """Last resort: look for explicit rejection phrases in prose.

    Returns an assessment only when a rejection is found. Negated forms
    ("not a duplicate", "would not reject this") do not count. Silence is
    not read as approval here; the caller's fail-open path handles that.
    """
    for pattern in REJECTION_PHRASES:
        for match in re.finditer(pattern, text, re.IGNORECASE):
            if _negated(text, match.start()):
                continue
            return {
                "approved": False,
                "total_score": 0,
                "reason": "Verifier answer reads as a rejection",
            }
    return None


PARSERS: List[Callable[[str], Optional[Dict]]] = [
    parse_direct_json,
    parse_fenced_json,
    parse_embedded_json,
    sniff_rejection_keywords,
]


def parse_assessment(text: str) -> Dict:
    """Run the parser chain. Raises VerificationError if nothing matches."""
    for parser in PARSERS:
        result = parser(text)
        if result is not None:
            logger.debug(f"Verifier answer parsed by {parser.__name__}")
            return result
    raise VerificationError(f"Unparseable verifier answer: {text[:120]!r}")


def _as_number(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def assessment_to_verdict(assessment: Dict) -> Verdict:
    score = _as_number(assessment.get("total_score"))
    approved = assessment.get("approved")
    if isinstance(approved, str):
        approved = approved.strip().lower() in ("true", "yes", "1")
    if approved is None:
        approved = score >= APPROVAL_THRESHOLD
    return Verdict(
        approved=bool(approved),
        reason=assessment.get("reason") or "No reason given",
        score=score,
        scores={
            k: _as_number(assessment[k]) for k in SUB_SCORES if k in assessment
        },
    )


class TipVerifier:
    """Scores a candidate tip with the verifier model.

    verify() never raises: verifier-side failures come back as an
    approved verdict with score 0 and the failure as its reason.
    """

    def __init__(self, llm: LLMProvider, temperature: Optional[float] = None):
        self.llm = llm
        self.temperature = temperature

    def verify(
        self,
        candidate: str,
        category: Category,
        previous_tips: Sequence[str],
        difficulty: Optional[Difficulty] = None,
    ) -> Verdict:
        prompt = build_verification_prompt(
            candidate, category, previous_tips, difficulty
        )
        try:
            answer = self.llm.generate(
                prompt, temperature=self.temperature, role=ROLE_VERIFIER
            )
        except Exception as e:
            # Any backend failure, not only GenerationError, must fail open.
            logger.warning(f"Tip verification unavailable, approving: {e}")
            return Verdict(approved=True, reason=f"Verifier unavailable: {e}", score=0)

        try:
            verdict = assessment_to_verdict(parse_assessment(answer))
        except VerificationError as e:
            logger.warning(f"{e} — approving")
            return Verdict(
                approved=True, reason="Could not parse verifier answer", score=0
            )

        logger.info(
            f"Verified {category.value} tip: approved={verdict.approved} "
            f"score={verdict.score:g} ({verdict.reason})"
        )
        return verdict
