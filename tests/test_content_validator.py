"""Verifier: parser chain, verdict derivation, fail-open behaviour."""
import sys
from pathlib import Path

import pytest
sys.path.insert(0, str(Path(__file__).resolve().parent))
from conftest import StubLLM

from core.content_validator import (
    TipVerifier,
    assessment_to_verdict,
    parse_assessment,
    parse_direct_json,
    parse_embedded_json,
    parse_fenced_json,
    sniff_rejection_keywords,
)
from core.errors import GenerationError, VerificationError
from core.llm_provider import ROLE_VERIFIER
from core.models import Category, Difficulty


class TestParsers:
    def test_direct(self):
        assert parse_direct_json('{"total_score": 8}') == {"total_score": 8}
        assert parse_direct_json("not json") is None
        assert parse_direct_json("[1, 2]") is None

    def test_fenced(self):
        text = 'Here you go:\n```json\n{"approved": true, "total_score": 9}\n```'
        assert parse_fenced_json(text) == {"approved": True, "total_score": 9}
        assert parse_fenced_json('{"approved": true}') is None

    def test_embedded(self):
        text = 'My verdict is {"approved": false, "reason": "dup"} overall.'
        assert parse_embedded_json(text) == {"approved": False, "reason": "dup"}
        assert parse_embedded_json("{ broken } and nothing else") is None

    def test_keyword_sniff(self):
        assert sniff_rejection_keywords("I would reject this tip.")["approved"] is False
        assert sniff_rejection_keywords("This is a duplicate of tip 2")["total_score"] == 0
        assert sniff_rejection_keywords("Looks great to me") is None

    @pytest.mark.parametrize("text", [
        "Not approved: too generic.",
        "This tip should be rejected.",
        "It looks like a near-duplicate of the hooks tip.",
        "The tip is fine, but it is not suitable for beginners.",
    ])
    def test_keyword_sniff_explicit_rejections(self, text):
        assert sniff_rejection_keywords(text)["approved"] is False

    @pytest.mark.parametrize("text", [
        "It is not a duplicate of earlier tips and is correct. I approve it.",
        "I would not reject this; it is accurate.",
        "This isn't a duplicate and should not be rejected.",
        "There is no reason to reject this tip.",
    ])
    def test_keyword_sniff_ignores_negated_phrases(self, text):
        assert sniff_rejection_keywords(text) is None

    def test_negated_prose_fails_open_in_verifier(self):
        llm = StubLLM(["It is not a duplicate of earlier tips and is correct. I approve it."])
        verdict = TipVerifier(llm).verify("Use const.", Category.FRONTEND, [])
        assert verdict.approved is True

    def test_chain_order(self):
        # Direct JSON wins even if the reason mentions a rejection word.
        data = parse_assessment('{"approved": true, "reason": "not a duplicate"}')
        assert data["approved"] is True

    def test_chain_exhausted_raises(self):
        with pytest.raises(VerificationError):
            parse_assessment("Looks great to me")


class TestVerdict:
    def test_explicit_approved_field_wins(self):
        verdict = assessment_to_verdict({"approved": False, "total_score": 10})
        assert verdict.approved is False
        assert verdict.score == 10

    def test_threshold_when_field_missing(self):
        assert assessment_to_verdict({"total_score": 7}).approved is True
        assert assessment_to_verdict({"total_score": 6.5}).approved is False

    def test_string_booleans(self):
        assert assessment_to_verdict({"approved": "true"}).approved is True
        assert assessment_to_verdict({"approved": "no"}).approved is False

    def test_sub_scores_and_reason(self):
        verdict = assessment_to_verdict({
            "uniqueness": 8, "relevance": "9", "correctness": 10,
            "total_score": 9, "reason": "solid",
        })
        assert verdict.scores == {"uniqueness": 8, "relevance": 9, "correctness": 10}
        assert verdict.reason == "solid"

    def test_garbage_score_is_zero(self):
        verdict = assessment_to_verdict({"total_score": "lots"})
        assert verdict.score == 0
        assert verdict.approved is False


class TestTipVerifier:
    def test_uses_verifier_role(self):
        llm = StubLLM(['{"approved": true, "total_score": 8, "reason": "ok"}'])
        verdict = TipVerifier(llm).verify("Use const.", Category.FRONTEND, [], Difficulty.MEDIUM)
        assert verdict.approved is True
        assert verdict.score == 8
        assert llm.calls[0]["role"] == ROLE_VERIFIER

    def test_rejection(self):
        llm = StubLLM(['```json\n{"approved": false, "total_score": 3, "reason": "duplicate"}\n```'])
        verdict = TipVerifier(llm).verify("Use const.", Category.FRONTEND, ["use const."])
        assert verdict.approved is False
        assert verdict.reason == "duplicate"

    def test_backend_failure_fails_open(self):
        llm = StubLLM(error=GenerationError("all providers down"))
        verdict = TipVerifier(llm).verify("Use const.", Category.FRONTEND, [])
        assert verdict.approved is True
        assert verdict.score == 0
        assert "unavailable" in verdict.reason

    def test_unexpected_exception_fails_open(self):
        llm = StubLLM(error=RuntimeError("socket closed"))
        verdict = TipVerifier(llm).verify("Use const.", Category.BACKEND, [])
        assert verdict.approved is True

    def test_unparseable_answer_fails_open(self):
        llm = StubLLM(["Looks great to me"])
        verdict = TipVerifier(llm).verify("Use const.", Category.FULLSTACK, [])
        assert verdict.approved is True
        assert verdict.score == 0
