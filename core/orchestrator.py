"""Orchestrator: wires the agent to the store, the LLM, Telegram and the clock.

Startup order: settings → store → LLM → agent (memory rebuilt from store)
→ Telegram channel + command bot → cron job. Shutdown runs in reverse.
"""

import signal
import logging
import threading
import time
from datetime import datetime
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from core.agent import TipAgent
from core.config import load_settings, topics_from_settings
from core.content_gen import TipGenerator
from core.content_validator import TipVerifier
from core.database import Database
from core.llm_provider import LLMProvider
from core.strategy import DifficultySelector, build_policy, weekday_category
from dashboard.telegram_bot import TelegramTipsBot
from platforms.base_platform import BaseChannel
from platforms.telegram_channel import TelegramChannel

logger = logging.getLogger(__name__)


def build_agent(settings: Dict, db: Database, llm: LLMProvider) -> TipAgent:
    """Assemble a TipAgent from settings. Does not touch the store."""
    agent_cfg = settings.get("agent", {})
    verifier = None
    if settings.get("verification", {}).get("enabled", True):
        verifier = TipVerifier(llm)
    generator = TipGenerator(
        llm,
        db,
        verifier=verifier,
        temperature=agent_cfg.get("temperature", 1.5),
        max_attempts=agent_cfg.get("max_attempts", 5),
        topics=topics_from_settings(settings),
    )
    return TipAgent(
        db,
        llm,
        generator=generator,
        category_policy=build_policy(agent_cfg.get("selection_policy", "history"), llm),
        difficulty_selector=DifficultySelector(llm),
        max_recent_tips=agent_cfg.get("recent_tips", 15),
        max_reflections=agent_cfg.get("reflections", 10),
    )


class Orchestrator:
    """Runs the bot: one scheduled post per cron tick plus chat commands.

    Concurrency: the cron job cannot overlap itself (max_instances=1), but
    a chat command may run at the same time as the job. Both go through the
    same agent; its memory is last-writer-wins.
    """

    def __init__(
        self,
        config_dir: str = "config/",
        settings: Optional[Dict] = None,
        db: Optional[Database] = None,
        llm: Optional[LLMProvider] = None,
        channel: Optional[BaseChannel] = None,
    ):
        self.config_dir = config_dir
        self.settings = settings if settings is not None else load_settings(config_dir)

        schedule = self.settings.get("schedule", {})
        self.cron = schedule.get("cron", "0 9 * * *")
        self.timezone = ZoneInfo(schedule.get("timezone", "Europe/Stockholm"))

        self.db = db or Database(self.settings["database"]["path"])
        self.llm = llm or LLMProvider(f"{config_dir}/llm.yaml")
        self.agent = build_agent(self.settings, self.db, self.llm).initialize()

        tg_config = dict(self.settings.get("telegram", {}))
        tg_config.setdefault("timezone", str(self.timezone))
        self.channel = channel or TelegramChannel(tg_config)
        self.telegram = TelegramTipsBot(tg_config, self.agent)
        self.post_as_card = tg_config.get("post_as_card", False)

        self.scheduler = BackgroundScheduler(
            timezone=self.timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._telegram_thread: Optional[threading.Thread] = None
        self._running = False

    # ── Jobs ─────────────────────────────────────────────────────────

    def scheduled_category(self):
        """Weekday rotation when configured, else let the agent decide."""
        policy = self.settings.get("agent", {}).get("scheduled_policy", "weekday")
        if policy == "weekday":
            return weekday_category(datetime.now(self.timezone).weekday())
        return None

    def post_daily_tip(self) -> bool:
        """Generate today's tip and post it. Never raises."""
        try:
            daily = self.agent.generate_daily_tip(self.scheduled_category())
            sent = self.channel.post_daily_tip(daily, as_card=self.post_as_card)
        except Exception as e:
            logger.error(f"Error sending scheduled tip: {e}", exc_info=True)
            return False
        if sent:
            logger.info(f"Daily {daily.category.value} tip sent")
        else:
            logger.error("Daily tip could not be delivered")
        return sent

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self, nonblocking: bool = False):
        self._running = True
        if self.settings.get("schedule", {}).get("enabled", True):
            self.scheduler.add_job(
                self.post_daily_tip,
                CronTrigger.from_crontab(self.cron, timezone=self.timezone),
                id="daily_tip",
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info(f"Scheduled daily tip at \"{self.cron}\" ({self.timezone})")

        self.telegram.build()
        if self.telegram.app:
            self._telegram_thread = threading.Thread(
                target=self.telegram.start_polling, daemon=True
            )
            self._telegram_thread.start()
            logger.info("Telegram polling started in background thread")

        if nonblocking:
            return

        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)
        try:
            while self._running:
                signal.pause()
        except AttributeError:
            # Windows fallback (no signal.pause)
            while self._running:
                time.sleep(1)

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}. Shutting down...")
        self.stop()

    def stop(self):
        """Graceful shutdown. Idempotent."""
        if not self._running:
            return
        self._running = False
        logger.info("Shutting down tipsbot...")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        self.telegram.stop_polling()
        if self._telegram_thread:
            self._telegram_thread.join(timeout=10)
        self.db.close()
        logger.info("Shutdown complete")
