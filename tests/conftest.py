"""Shared fixtures for tipsbot tests."""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from core.database import Database  # noqa: E402
from core.models import Category, Difficulty, Tip  # noqa: E402


class StubLLM:
    """Scripted stand-in for LLMProvider.generate.

    Answers are taken from `responses` in order; an Exception instance in
    the queue is raised instead of returned. Once the queue is empty every
    call gets `default` (or raises `error` when set).
    """

    def __init__(self, responses=None, default="", error=None):
        self.responses = list(responses or [])
        self.default = default
        self.error = error
        self.calls = []

    def generate(self, prompt, system_prompt="", temperature=None,
                 max_tokens=None, role="generator", provider=None):
        self.calls.append({"prompt": prompt, "temperature": temperature, "role": role})
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self.error is not None:
            raise self.error
        return self.default

    @property
    def prompts(self):
        return [c["prompt"] for c in self.calls]


def make_tip(text, category=Category.FRONTEND, difficulty=Difficulty.MEDIUM, **kw):
    """Helper: a Tip whose text is already normalized."""
    return Tip(text=text.strip().lower(), category=category,
               difficulty=difficulty, display_text=text, **kw)


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite store in a temp directory."""
    database = Database(str(tmp_path / "data" / "tips.db"))
    yield database
    database.close()


@pytest.fixture
def stub_llm():
    return StubLLM(default="Use const instead of var.")
