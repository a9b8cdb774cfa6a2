"""Telegram command bot: answers exact-match chat commands with tips."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ContextTypes,
    MessageHandler,
    filters,
)

from core.agent import TipAgent, tip_prefix
from core.models import Category, DEFAULT_DIFFICULTY
from core.strategy import weekday_category
from platforms.base_platform import DEFAULT_MAX_LENGTH, format_message

logger = logging.getLogger(__name__)

# command → (handler name, progress message)
COMMANDS: Dict[str, tuple] = {
    "!daily-tip": ("_cmd_daily", "🔍 Generating today's tip..."),
    "!frontend-tips": ("_cmd_frontend", "🔍 Generating a frontend tip..."),
    "!backend-tips": ("_cmd_backend", "🔍 Generating a backend tip..."),
    "!fullstack-tips": ("_cmd_fullstack", "🔍 Generating a fullstack tip..."),
    "!ai-tips": ("_cmd_ai_tip", "🤖 Thinking about which kind of tip is needed..."),
    "!random-tips": ("_cmd_random", "🎲 Picking a category at random..."),
    "!ai-reasoning": ("_cmd_reasoning", "🤖 Looking at earlier tips and deciding the next step..."),
    "!help": ("_cmd_help", ""),
}

HELP_TEXT = (
    "Here's what I can do:\n\n"
    "!daily-tip — Today's tip (category rotates by weekday)\n"
    "!frontend-tips — A frontend tip\n"
    "!backend-tips — A backend tip\n"
    "!fullstack-tips — A fullstack tip\n"
    "!ai-tips — Let the agent pick the category and level\n"
    "!random-tips — Random category\n"
    "!ai-reasoning — How the agent would choose the next tip\n"
    "!help — This message"
)

ERROR_TEXT = "Something went wrong while processing the command."


def resolve_command(text: Optional[str]) -> Optional[str]:
    """Exact match after trimming; anything else is not a command."""
    if not text:
        return None
    command = text.strip()
    return command if command in COMMANDS else None


class TelegramTipsBot:
    """Polling Telegram bot that serves tips on demand.

    The agent is synchronous; each command runs it in a worker thread so
    the event loop keeps answering while the model thinks.
    """

    def __init__(self, config: Dict, agent: TipAgent):
        self.config = config
        self.agent = agent
        self.allowed_chat_ids = [int(c) for c in config.get("allowed_chat_ids", [])]
        self.max_length = config.get("max_message_length", DEFAULT_MAX_LENGTH)
        self.timezone = ZoneInfo(config["timezone"]) if config.get("timezone") else None
        self.app: Optional[Application] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._polling_event: Optional[asyncio.Event] = None

    def build(self):
        token = self.config.get("bot_token", "")
        if not token or token.startswith("YOUR_"):
            logger.warning("Telegram bot token not configured")
            return

        self.app = Application.builder().token(token).build()
        self.app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._on_message)
        )

    def _is_allowed(self, chat_id: int) -> bool:
        return not self.allowed_chat_ids or chat_id in self.allowed_chat_ids

    # ── Dispatch ─────────────────────────────────────────────────────

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not update.effective_message or not update.effective_chat:
            return
        user = update.effective_user
        if user is None or user.is_bot:
            return
        if not self._is_allowed(update.effective_chat.id):
            return

        command = resolve_command(update.effective_message.text)
        if command is None:
            return
        logger.info(f"Command received: {command} from {user.username or user.id}")

        handler_name, progress = COMMANDS[command]
        progress_msg = None
        try:
            if progress:
                progress_msg = await update.effective_chat.send_message(progress)
            reply = await getattr(self, handler_name)()
        except Exception as e:
            logger.error(f"Error handling {command}: {e}", exc_info=True)
            reply = ERROR_TEXT

        if progress_msg is not None:
            try:
                await progress_msg.delete()
            except TelegramError as e:
                logger.debug(f"Could not delete progress message: {e}")

        await update.effective_chat.send_message(reply)

    # ── Command Handlers ─────────────────────────────────────────────
    # Each returns the reply text; the dispatcher sends it.

    async def _category_tip(self, category: Category) -> str:
        tip = await asyncio.to_thread(self.agent.generate_tip, category, DEFAULT_DIFFICULTY)
        return format_message(tip_prefix(category, DEFAULT_DIFFICULTY), tip, self.max_length)

    async def _cmd_frontend(self) -> str:
        return await self._category_tip(Category.FRONTEND)

    async def _cmd_backend(self) -> str:
        return await self._category_tip(Category.BACKEND)

    async def _cmd_fullstack(self) -> str:
        return await self._category_tip(Category.FULLSTACK)

    async def _cmd_daily(self) -> str:
        category = weekday_category(datetime.now(self.timezone).weekday())
        daily = await asyncio.to_thread(self.agent.generate_daily_tip, category)
        return format_message(daily.prefix, daily.tip, self.max_length)

    async def _cmd_ai_tip(self) -> str:
        daily = await asyncio.to_thread(self.agent.generate_daily_tip)
        return format_message(daily.prefix, daily.tip, self.max_length)

    async def _cmd_random(self) -> str:
        daily = await asyncio.to_thread(self.agent.surprise)
        return format_message(daily.prefix, daily.tip, self.max_length)

    async def _cmd_reasoning(self) -> str:
        thinking = await asyncio.to_thread(self.agent.get_agent_reasoning)
        return format_message("🧠 The agent's reasoning:", thinking, self.max_length)

    async def _cmd_help(self) -> str:
        return HELP_TEXT

    # ── Polling ──────────────────────────────────────────────────────

    def start_polling(self):
        """Blocking; run it in a daemon thread."""
        if not self.app:
            self.build()
        if not self.app:
            logger.error("Cannot start Telegram bot — not configured")
            return
        logger.info("Starting Telegram command bot...")

        # Own loop, not installed as the thread default, so nothing else in
        # the process picks it up by accident.
        loop = asyncio.new_event_loop()
        self._loop = loop
        try:
            loop.run_until_complete(self._async_polling())
        except Exception as e:
            logger.error(f"Telegram polling error: {e}")
        finally:
            loop.close()
            self._loop = None

    async def _async_polling(self):
        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling()
        logger.info("Telegram polling active")

        self._polling_event = asyncio.Event()
        await self._polling_event.wait()

        await self.app.updater.stop()
        await self.app.stop()
        await self.app.shutdown()

    def stop_polling(self):
        """Thread-safe: wakes the polling loop so it shuts down."""
        if self._loop and self._polling_event:
            self._loop.call_soon_threadsafe(self._polling_event.set)
