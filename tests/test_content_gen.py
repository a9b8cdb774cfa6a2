"""Retry loop: dedup, review, persistence and the attempt budget."""
import random
import sys
from pathlib import Path

import pytest
sys.path.insert(0, str(Path(__file__).resolve().parent))
from conftest import StubLLM, make_tip

from core.content_gen import MAX_ATTEMPTS, TipGenerator
from core.errors import DuplicateContent, GenerationError, PersistenceError
from core.models import Category, Difficulty, GenerationStatus, Verdict


class ScriptedVerifier:
    def __init__(self, verdicts):
        self.verdicts = list(verdicts)
        self.calls = []

    def verify(self, candidate, category, previous_tips, difficulty=None):
        self.calls.append((candidate, category, list(previous_tips), difficulty))
        return self.verdicts.pop(0)


def generator(llm, db, **kw):
    kw.setdefault("rng", random.Random(7))
    return TipGenerator(llm, db, **kw)


class TestAcceptance:
    def test_first_attempt_persists(self, db):
        llm = StubLLM(["  Use const instead of var.  "])
        result = generator(llm, db).generate_unique_tip(Category.FRONTEND)

        assert result.status == GenerationStatus.ACCEPTED
        assert result.accepted
        assert result.attempts == 1
        assert result.text == "Use const instead of var."
        assert result.tip.text == "use const instead of var."
        assert db.tip_exists("use const instead of var.", Category.FRONTEND)
        assert len(llm.calls) == 1

    def test_uses_generation_temperature(self, db):
        llm = StubLLM(["tip"])
        generator(llm, db, temperature=1.5).generate_unique_tip(Category.BACKEND)
        assert llm.calls[0]["temperature"] == 1.5

    def test_difficulty_and_topics_recorded(self, db):
        llm = StubLLM(["Index your joins."])
        topics = {c: [c.value.upper()] for c in Category}
        result = generator(llm, db, topics=topics).generate_unique_tip(
            Category.BACKEND, Difficulty.ADVANCED
        )
        stored = db.get_recent_tips()[0]
        assert stored.difficulty == Difficulty.ADVANCED
        assert stored.topics == ["BACKEND"]
        assert "advanced" in llm.prompts[0]
        assert result.tip.difficulty == Difficulty.ADVANCED


class TestDuplicates:
    @pytest.mark.parametrize("n", [1, 2, 4])
    def test_n_duplicates_cost_n_plus_one_calls(self, db, n):
        existing = [f"old tip {i}" for i in range(n)]
        for text in existing:
            db.save_tip(make_tip(text))
        llm = StubLLM([t.upper() for t in existing] + ["Brand new tip"])

        result = generator(llm, db).generate_unique_tip(Category.FRONTEND)

        assert result.accepted
        assert result.attempts == n + 1
        assert len(llm.calls) == n + 1
        assert result.text == "Brand new tip"

    def test_exhausted_returns_last_candidate_unsaved(self, db):
        db.save_tip(make_tip("use hooks."))
        llm = StubLLM(default="Use Hooks.")

        result = generator(llm, db).generate_unique_tip(Category.FRONTEND)

        assert result.status == GenerationStatus.EXHAUSTED
        assert result.text == "Use Hooks."
        assert result.attempts == MAX_ATTEMPTS
        assert len(llm.calls) == MAX_ATTEMPTS
        assert db.count_tips() == 1

    def test_duplicate_check_scoped_to_category(self, db):
        db.save_tip(make_tip("cache it.", category=Category.BACKEND))
        llm = StubLLM(["Cache it."])
        result = generator(llm, db).generate_unique_tip(Category.FRONTEND)
        assert result.accepted
        assert result.attempts == 1

    def test_insert_race_counts_as_retry(self, db, monkeypatch):
        real_save = db.save_tip
        calls = []

        def racy_save(tip):
            calls.append(tip.text)
            if len(calls) == 1:
                raise DuplicateContent("lost race")
            return real_save(tip)

        monkeypatch.setattr(db, "save_tip", racy_save)
        llm = StubLLM(["first", "second"])
        result = generator(llm, db).generate_unique_tip(Category.FRONTEND)

        assert result.accepted
        assert result.attempts == 2
        assert result.text == "second"

    def test_persistence_error_propagates_with_tip(self, db, monkeypatch):
        def broken(tip):
            raise PersistenceError("disk full", tip=tip)

        monkeypatch.setattr(db, "save_tip", broken)
        llm = StubLLM(["Use const."])
        with pytest.raises(PersistenceError) as exc:
            generator(llm, db).generate_unique_tip(Category.FRONTEND)
        assert exc.value.tip.display_text == "Use const."


class TestBudget:
    def test_attempts_never_exceed_budget(self, db):
        llm = StubLLM(default="")
        result = generator(llm, db, max_attempts=3).generate_unique_tip(Category.FULLSTACK)
        assert result.status == GenerationStatus.EMPTY
        assert result.text == ""
        assert len(llm.calls) == 3

    def test_backend_errors_consume_attempts(self, db):
        llm = StubLLM([GenerationError("down"), GenerationError("down"), "Finally."])
        result = generator(llm, db).generate_unique_tip(Category.FRONTEND)
        assert result.accepted
        assert result.attempts == 3

    def test_all_errors_is_empty(self, db):
        llm = StubLLM(error=GenerationError("down"))
        result = generator(llm, db).generate_unique_tip(Category.FRONTEND)
        assert result.status == GenerationStatus.EMPTY
        assert len(llm.calls) == MAX_ATTEMPTS
        assert db.count_tips() == 0

    def test_each_attempt_gets_a_fresh_seed(self, db):
        db.save_tip(make_tip("same"))
        llm = StubLLM(default="same")
        generator(llm, db).generate_unique_tip(Category.FRONTEND)
        assert len(set(llm.prompts)) > 1


class TestReview:
    def test_rejection_triggers_retry(self, db):
        verifier = ScriptedVerifier([
            Verdict(approved=False, reason="too vague", score=3),
            Verdict(approved=True, reason="fine", score=8),
        ])
        llm = StubLLM(["Vague tip", "Concrete tip"])
        result = generator(llm, db, verifier=verifier).generate_unique_tip(
            Category.FRONTEND, previous_texts=["peer"]
        )
        assert result.accepted
        assert result.text == "Concrete tip"
        assert result.tip.verification_score == 8
        assert db.count_tips() == 1
        assert not db.tip_exists("vague tip", Category.FRONTEND)
        assert verifier.calls[0][2] == ["peer"]

    def test_duplicate_skips_review(self, db):
        db.save_tip(make_tip("old"))
        verifier = ScriptedVerifier([Verdict(approved=True, reason="ok", score=9)])
        llm = StubLLM(["Old", "New"])
        generator(llm, db, verifier=verifier).generate_unique_tip(Category.FRONTEND)
        assert [c[0] for c in verifier.calls] == ["New"]

    def test_exhausted_after_rejections_keeps_last_verdict(self, db):
        verifier = ScriptedVerifier(
            [Verdict(approved=False, reason=f"no {i}", score=1) for i in range(5)]
        )
        llm = StubLLM([f"tip {i}" for i in range(5)])
        result = generator(llm, db, verifier=verifier).generate_unique_tip(Category.BACKEND)
        assert result.status == GenerationStatus.EXHAUSTED
        assert result.text == "tip 4"
        assert result.verdict.reason == "no 4"
        assert db.count_tips() == 0
