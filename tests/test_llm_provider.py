"""Provider chain: routing, fallback, circuit breaker."""
from types import SimpleNamespace

import pytest

from core.errors import GenerationError
from core.llm_provider import ROLE_GENERATOR, ROLE_VERIFIER, LLMProvider


class FakeClient:
    """Mimics openai.OpenAI().chat.completions.create."""

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(total_tokens=12),
        )


def provider_with(clients, routing=None):
    llm = LLMProvider(config={
        "providers": {},
        "fallback_chain": list(clients),
        "routing": routing or {},
    })
    for name, client in clients.items():
        llm.register_provider(name, {"model": f"{name}-small",
                                     "models": {ROLE_VERIFIER: f"{name}-large"}}, client=client)
    return llm


class TestGenerate:
    def test_first_provider_answers(self):
        primary = FakeClient("  hello  ")
        llm = provider_with({"primary": primary, "backup": FakeClient("unused")})
        assert llm.generate("hi", temperature=1.5) == "hello"
        assert primary.requests[0]["temperature"] == 1.5
        assert primary.requests[0]["model"] == "primary-small"

    def test_falls_back_on_error(self):
        backup = FakeClient("from backup")
        llm = provider_with({"primary": FakeClient(error=RuntimeError("500")), "backup": backup})
        assert llm.generate("hi") == "from backup"
        assert llm.get_stats()["providers"]["primary"]["errors"] == 1

    def test_empty_reply_counts_as_failure(self):
        llm = provider_with({"primary": FakeClient(""), "backup": FakeClient("ok")})
        assert llm.generate("hi") == "ok"

    def test_all_fail_raises(self):
        llm = provider_with({"primary": FakeClient(error=RuntimeError("boom"))})
        with pytest.raises(GenerationError):
            llm.generate("hi")

    def test_no_providers_raises(self):
        llm = LLMProvider(config={"providers": {}})
        with pytest.raises(GenerationError):
            llm.generate("hi")

    def test_system_prompt_sent_first(self):
        client = FakeClient("ok")
        llm = provider_with({"p": client})
        llm.generate("user text", system_prompt="be brief")
        messages = client.requests[0]["messages"]
        assert messages[0] == {"role": "system", "content": "be brief"}
        assert messages[1]["content"] == "user text"


class TestRouting:
    def test_verifier_uses_role_model_and_chain(self):
        gen = FakeClient("gen")
        ver = FakeClient("ver")
        llm = provider_with(
            {"gen": gen, "ver": ver},
            routing={ROLE_GENERATOR: ["gen"], ROLE_VERIFIER: ["ver"]},
        )
        assert llm.generate("x") == "gen"
        assert llm.generate("x", role=ROLE_VERIFIER) == "ver"
        assert ver.requests[0]["model"] == "ver-large"

    def test_forced_provider(self):
        llm = provider_with({"a": FakeClient("a"), "b": FakeClient("b")})
        assert llm.generate("x", provider="b") == "b"


class TestCircuitBreaker:
    def test_quota_error_disables_provider(self):
        limited = FakeClient(error=RuntimeError("Error code: 429 - quota exceeded"))
        llm = provider_with({"limited": limited, "backup": FakeClient("ok")})

        assert llm.generate("x") == "ok"
        assert llm.generate("x") == "ok"
        # Second call skips the tripped provider entirely.
        assert len(limited.requests) == 1
        assert "limited" in llm.get_stats()["disabled_providers"]

    def test_connection_report(self):
        llm = provider_with({"up": FakeClient("OK"), "down": FakeClient(error=RuntimeError("x"))})
        assert llm.test_connection() == {"up": True, "down": False}


class TestMonitoring:
    def test_available_providers_and_routing(self):
        llm = provider_with(
            {"gen": FakeClient("a"), "ver": FakeClient("b")},
            routing={ROLE_VERIFIER: ["ver", "missing"]},
        )
        llm.register_provider("no_client", {"model": "m"})
        assert llm.get_available_providers() == ["gen", "ver"]
        stats = llm.get_stats()
        assert stats["routing"][ROLE_VERIFIER] == ["ver", "missing"]
        assert stats["routing"][ROLE_GENERATOR] == ["gen", "ver"]

    def test_placeholder_key_not_available(self):
        llm = LLMProvider(config={"providers": {
            "groq": {"enabled": True, "api_key": "YOUR_GROQ_KEY",
                     "base_url": "https://api.groq.com/openai/v1", "model": "llama"},
            "off": {"enabled": False, "api_key": "k", "base_url": "http://x", "model": "m"},
        }})
        assert llm.get_available_providers() == []
