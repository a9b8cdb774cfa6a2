"""LLM provider abstraction — OpenAI-compatible endpoints with fallback.

Every provider (Gemini's OpenAI-compatible endpoint, Groq, a local Ollama)
is reached through the same OpenAI SDK client. Two roles share the pool:
the generator writes tips, reflections and selection answers; the verifier
reviews candidates, usually on a stronger model.

When one provider errors or runs out of quota, the next one in the role's
chain takes over.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, List, Dict

import yaml
from openai import OpenAI

from core.errors import GenerationError

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────
ROLE_GENERATOR = "generator"   # tips, reflections, category/difficulty picks
ROLE_VERIFIER = "verifier"     # second-opinion quality review

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CHAIN = ["gemini", "groq", "ollama"]
QUOTA_MARKERS = ("429", "rate_limit", "rate limit", "quota", "resource_exhausted")


def is_quota_error(error) -> bool:
    """429 / quota-exhausted, whatever the provider calls it."""
    message = str(error).lower()
    return any(marker in message for marker in QUOTA_MARKERS)


@dataclass
class ProviderStats:
    calls: int = 0
    tokens: int = 0
    errors: int = 0
    total_ms: int = 0

    def as_dict(self) -> Dict:
        return {
            "calls": self.calls,
            "tokens": self.tokens,
            "errors": self.errors,
            "avg_ms": round(self.total_ms / max(self.calls, 1)),
        }


class CircuitBreaker:
    """Per-provider cooldowns after quota exhaustion."""

    def __init__(self, cooldown: float):
        self.cooldown = cooldown
        self._reopens_at: Dict[str, float] = {}
        self._lock = threading.Lock()

    def trip(self, name: str, seconds: Optional[float] = None):
        seconds = seconds or self.cooldown
        with self._lock:
            self._reopens_at[name] = time.time() + seconds
        logger.warning(
            f"Circuit-breaker tripped for '{name}' — disabled for {seconds / 60:.0f}min"
        )

    def is_open(self, name: str) -> bool:
        with self._lock:
            reopens_at = self._reopens_at.get(name)
            if reopens_at is None:
                return False
            if time.time() < reopens_at:
                return True
            del self._reopens_at[name]
            return False

    def remaining(self) -> Dict[str, int]:
        """Seconds left per disabled provider."""
        now = time.time()
        with self._lock:
            return {n: int(t - now) for n, t in self._reopens_at.items() if t > now}


class LLMProvider:
    """Role-aware provider chain over OpenAI-compatible APIs.

    - generator and verifier roles may prefer different providers
      (`routing`) and different models within one provider (`models`)
    - a 429 / quota error takes the provider out for CIRCUIT_BREAKER_COOLDOWN
    - the SDK never retries on its own; the chain is the retry
    - an empty completion counts as a failure and moves down the chain
    """

    CIRCUIT_BREAKER_COOLDOWN = 3600  # 1 hour

    def __init__(
        self,
        config_path: str = "config/llm.yaml",
        config: Optional[Dict] = None,
    ):
        if config is None:
            with open(config_path) as f:
                config = yaml.safe_load(f) or {}
        self.config = config

        self.clients: Dict[str, OpenAI] = {}
        self.provider_configs: Dict[str, Dict] = {}
        self.fallback_chain: List[str] = config.get("fallback_chain", DEFAULT_CHAIN)
        routing = config.get("routing", {})
        self._chains: Dict[str, List[str]] = {
            role: routing.get(role, self.fallback_chain)
            for role in (ROLE_GENERATOR, ROLE_VERIFIER)
        }

        self.breaker = CircuitBreaker(self.CIRCUIT_BREAKER_COOLDOWN)
        self._stats: Dict[str, ProviderStats] = {}
        self._stats_lock = threading.Lock()

        for name, cfg in config.get("providers", {}).items():
            self._connect(name, cfg)
        self._log_routing()

    def _connect(self, name: str, cfg: Dict):
        if not cfg.get("enabled", False):
            return
        if cfg.get("api_key", "").startswith("YOUR_"):
            logger.warning(f"LLM provider '{name}' has placeholder API key — skipping")
            return
        try:
            client = OpenAI(
                base_url=cfg["base_url"],
                api_key=cfg["api_key"],
                max_retries=0,
                timeout=cfg.get("timeout", DEFAULT_TIMEOUT_SECONDS),
            )
        except Exception as e:
            logger.warning(f"Failed to initialize LLM provider '{name}': {e}")
            return
        self.register_provider(name, cfg, client)
        logger.info(f"LLM provider ready: {name} ({cfg.get('model', '?')})")

    def _log_routing(self):
        if not self.clients:
            logger.warning(
                "No LLM providers configured. Fill in config/llm.yaml with real API keys."
            )
            return
        for role, chain in self._chains.items():
            usable = [p for p in chain if p in self.clients]
            logger.info(f"LLM routing {role}: {usable}")

    def register_provider(self, name: str, cfg: Dict, client=None):
        """Add a provider (and optionally its client) to the pool."""
        if client is not None:
            self.clients[name] = client
        self.provider_configs[name] = cfg
        with self._stats_lock:
            self._stats.setdefault(name, ProviderStats())

    def model_for(self, provider: str, role: str) -> str:
        cfg = self.provider_configs[provider]
        return cfg.get("models", {}).get(role, cfg["model"])

    # ── Core Generation ──────────────────────────────────────────

    def _count(self, provider: str, tokens: int = 0, ms: float = 0, failed: bool = False):
        with self._stats_lock:
            stats = self._stats.get(provider)
            if stats is None:
                return
            if failed:
                stats.errors += 1
                return
            stats.calls += 1
            stats.tokens += tokens
            stats.total_ms += int(ms)

    def _complete(
        self,
        provider: str,
        role: str,
        messages: List[Dict],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> str:
        """One chat completion. Raises on transport errors and empty text."""
        cfg = self.provider_configs[provider]
        model = self.model_for(provider, role)
        started = time.time()
        response = self.clients[provider].chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens or cfg.get("max_tokens", 1024),
            temperature=cfg.get("temperature", 0.7) if temperature is None else temperature,
        )
        elapsed_ms = (time.time() - started) * 1000
        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise GenerationError(f"empty response from {provider}")

        usage = getattr(response, "usage", None)
        self._count(provider, getattr(usage, "total_tokens", None) or len(text) // 4, elapsed_ms)
        logger.debug(f"LLM [{role}]: {len(text)} chars via {provider} ({model}) in {elapsed_ms:.0f}ms")
        return text

    def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        role: str = ROLE_GENERATOR,
        provider: Optional[str] = None,
    ) -> str:
        """Generate text through the role's provider chain.

        `provider` pins a single provider and bypasses routing. Returns the
        stripped completion; raises GenerationError once every candidate
        provider has failed or answered with nothing.
        """
        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        chain = [provider] if provider else self._chains.get(role, self.fallback_chain)
        last_error = None
        for name in chain:
            if name not in self.clients:
                continue
            if self.breaker.is_open(name):
                logger.debug(f"Provider '{name}' circuit-breaker open — skipping")
                continue
            try:
                return self._complete(name, role, messages, temperature, max_tokens)
            except Exception as e:
                last_error = e
                self._count(name, failed=True)
                if is_quota_error(e):
                    self.breaker.trip(name)
                else:
                    logger.warning(f"LLM provider '{name}' failed: {e}")

        raise GenerationError(f"All LLM providers failed. Last error: {last_error}")

    # ── Stats & Monitoring ───────────────────────────────────────

    def get_stats(self) -> Dict:
        """Usage per provider plus circuit-breaker state."""
        with self._stats_lock:
            providers = {name: s.as_dict() for name, s in self._stats.items()}
        return {
            "providers": providers,
            "routing": dict(self._chains),
            "disabled_providers": self.breaker.remaining(),
            "total_calls": sum(p["calls"] for p in providers.values()),
            "total_errors": sum(p["errors"] for p in providers.values()),
        }

    def test_connection(self, provider: Optional[str] = None) -> Dict[str, bool]:
        """Ping each provider (or just `provider`) with a tiny prompt."""
        results = {}
        for name in [provider] if provider else list(self.clients):
            try:
                self.generate("Reply with exactly: OK", provider=name, max_tokens=5)
            except GenerationError as e:
                logger.error(f"LLM provider '{name}': failed — {e}")
                results[name] = False
                continue
            logger.info(f"LLM provider '{name}': connected")
            results[name] = True
        return results

    def get_available_providers(self) -> List[str]:
        """Names of configured (non-placeholder) providers."""
        return list(self.clients)
