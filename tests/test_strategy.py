"""Category and difficulty selection."""
import random
import sys
from datetime import datetime
from pathlib import Path

import pytest
sys.path.insert(0, str(Path(__file__).resolve().parent))
from conftest import StubLLM

from core.errors import GenerationError, InvalidArgument, SelectionError
from core.models import AgentMemory, Category, Difficulty
from core.strategy import (
    DifficultySelector,
    HistoryCategoryPolicy,
    RandomCategoryPolicy,
    WeekdayRotationPolicy,
    build_policy,
    parse_category,
    parse_difficulty,
    weekday_category,
)


class TestWeekday:
    def test_total_over_week(self):
        for day in range(7):
            assert weekday_category(day) in Category

    def test_rotation(self):
        assert weekday_category(0) == Category.FRONTEND
        assert weekday_category(1) == Category.BACKEND
        assert weekday_category(2) == Category.FULLSTACK
        assert weekday_category(5) == Category.FRONTEND
        assert weekday_category(6) == Category.FULLSTACK

    def test_wraps(self):
        assert weekday_category(7) == weekday_category(0)

    def test_policy_uses_clock(self):
        tuesday = datetime(2026, 10, 20)
        policy = WeekdayRotationPolicy(clock=lambda: tuesday)
        assert policy.choose(AgentMemory()) == Category.BACKEND


class TestParsing:
    @pytest.mark.parametrize("answer,expected", [
        ("FRONTEND", Category.FRONTEND),
        (" backend\n", Category.BACKEND),
        ("Fullstack.", Category.FULLSTACK),
        ("**FRONTEND**", Category.FRONTEND),
    ])
    def test_category(self, answer, expected):
        assert parse_category(answer) == expected

    @pytest.mark.parametrize("answer", ["BANANA", "", "frontend and backend"])
    def test_category_rejects(self, answer):
        with pytest.raises(SelectionError):
            parse_category(answer)

    @pytest.mark.parametrize("answer,expected", [
        ("BEGINNER", Difficulty.BEGINNER),
        ("I suggest Advanced today", Difficulty.ADVANCED),
        ("medium", Difficulty.MEDIUM),
        ("intermediate", Difficulty.MEDIUM),
        ("nybörjare", Difficulty.BEGINNER),
        ("AVANCERAD", Difficulty.ADVANCED),
        ("medel", Difficulty.MEDIUM),
    ])
    def test_difficulty(self, answer, expected):
        assert parse_difficulty(answer) == expected

    def test_difficulty_rejects(self):
        with pytest.raises(SelectionError):
            parse_difficulty("hard")


class TestPolicies:
    def test_random_in_set(self):
        policy = RandomCategoryPolicy(random.Random(3))
        picks = {policy.choose(AgentMemory()) for _ in range(50)}
        assert picks <= set(Category)
        assert len(picks) == 3

    def test_history_parses_answer(self):
        llm = StubLLM(["BACKEND"])
        assert HistoryCategoryPolicy(llm).choose(AgentMemory()) == Category.BACKEND
        assert "Category stats" in llm.prompts[0]

    def test_history_invalid_answer_defaults_to_frontend(self):
        llm = StubLLM(["BANANA"])
        assert HistoryCategoryPolicy(llm).choose(AgentMemory()) == Category.FRONTEND

    def test_history_backend_failure_defaults_to_frontend(self):
        llm = StubLLM(error=GenerationError("down"))
        assert HistoryCategoryPolicy(llm).choose(AgentMemory()) == Category.FRONTEND

    def test_build_policy(self):
        assert isinstance(build_policy("weekday"), WeekdayRotationPolicy)
        assert isinstance(build_policy("random"), RandomCategoryPolicy)
        assert isinstance(build_policy("history", StubLLM()), HistoryCategoryPolicy)

    def test_build_policy_errors(self):
        with pytest.raises(InvalidArgument):
            build_policy("astrology")
        with pytest.raises(InvalidArgument):
            build_policy("history")


class TestDifficultySelector:
    def test_parses_answer(self):
        llm = StubLLM(["ADVANCED"])
        level = DifficultySelector(llm).choose(Category.BACKEND, AgentMemory())
        assert level == Difficulty.ADVANCED

    def test_no_keyword_defaults_to_medium(self):
        llm = StubLLM(["Let's go hard"])
        assert DifficultySelector(llm).choose(Category.BACKEND, AgentMemory()) == Difficulty.MEDIUM

    def test_backend_failure_defaults_to_medium(self):
        llm = StubLLM(error=GenerationError("down"))
        assert DifficultySelector(llm).choose(Category.FRONTEND, AgentMemory()) == Difficulty.MEDIUM
