"""YAML configuration loading with built-in defaults."""

import copy
import logging
import os
from typing import Dict, List

import yaml

from core.models import CATEGORY_TOPICS, Category

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict = {
    "database": {"path": "data/tipsbot.db"},
    "telegram": {
        "bot_token": "YOUR_TELEGRAM_BOT_TOKEN",
        "chat_id": "",
        "allowed_chat_ids": [],
        "max_message_length": 2000,
        "post_as_card": False,
    },
    "schedule": {
        "enabled": True,
        "cron": "0 9 * * *",
        "timezone": "Europe/Stockholm",
    },
    "agent": {
        "temperature": 1.5,
        "max_attempts": 5,
        "recent_tips": 15,
        "reflections": 10,
        "selection_policy": "history",
        "scheduled_policy": "weekday",
    },
    "verification": {"enabled": True},
    "topics": {c.value: list(t) for c, t in CATEGORY_TOPICS.items()},
}


def load_yaml(path: str) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(config_dir: str = "config/") -> Dict:
    """settings.yaml merged over DEFAULT_SETTINGS. Missing file = defaults."""
    path = os.path.join(config_dir, "settings.yaml")
    if not os.path.exists(path):
        logger.warning(f"{path} not found, using built-in defaults")
        return copy.deepcopy(DEFAULT_SETTINGS)
    return deep_merge(DEFAULT_SETTINGS, load_yaml(path))


def topics_from_settings(settings: Dict) -> Dict[Category, List[str]]:
    configured = settings.get("topics", {})
    return {
        c: list(configured.get(c.value, CATEGORY_TOPICS[c])) for c in Category
    }


def check_config_placeholders(config: dict, name: str) -> list:
    """Check for placeholder values in config. Returns list of warnings."""
    warnings = []

    def _check(d, path=""):
        if isinstance(d, dict):
            for k, v in d.items():
                _check(v, f"{path}.{k}" if path else k)
        elif isinstance(d, list):
            for i, v in enumerate(d):
                _check(v, f"{path}[{i}]")
        elif isinstance(d, str) and d.startswith("YOUR_"):
            warnings.append(f"  {name}: {path} = {d}")

    _check(config)
    return warnings
