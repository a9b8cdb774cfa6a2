#!/usr/bin/env python3
"""Tipsbot — daily AI-generated programming tips for a Telegram chat."""

import os
import sys
import logging
from pathlib import Path

import click
import yaml

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.config import check_config_placeholders, load_settings  # noqa: E402
from core.models import Category, Difficulty  # noqa: E402


def setup_logging(level: str = "INFO"):
    """Configure logging with console + rotating file output."""
    from logging.handlers import RotatingFileHandler

    log_level = getattr(logging, level.upper(), logging.INFO)
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    root = logging.getLogger()
    root.setLevel(log_level)

    if not root.handlers:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
        root.addHandler(console)

    # Persistent file handler (5MB, keep 3 rotated files)
    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / "tipsbot.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    root.addHandler(file_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)


def _build_agent(settings):
    """Store + LLM + agent for one-shot commands. Caller closes the db."""
    from core.database import Database
    from core.llm_provider import LLMProvider
    from core.orchestrator import build_agent

    db = Database(settings["database"]["path"])
    llm = LLMProvider("config/llm.yaml")
    return db, build_agent(settings, db, llm).initialize()


# ─── CLI ─────────────────────────────────────────────────────────────


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose):
    """Tipsbot — AI programming tips agent."""
    ctx.ensure_object(dict)
    os.chdir(PROJECT_ROOT)
    setup_logging("DEBUG" if verbose else "INFO")
    ctx.obj["settings"] = load_settings("config/")


# ─── RUN ─────────────────────────────────────────────────────────────


@cli.command()
def run():
    """Start the scheduler and the Telegram command bot.

    Blocks until SIGINT/SIGTERM.
    """
    click.echo("Starting tipsbot in foreground mode...")
    click.echo(f"PID: {os.getpid()}")
    click.echo("Press Ctrl+C to stop.\n")

    from core.orchestrator import Orchestrator
    orch = Orchestrator()
    try:
        orch.start()
    except KeyboardInterrupt:
        click.echo("\nShutting down tipsbot...")
    finally:
        orch.stop()


# ─── ONE-SHOT GENERATION ─────────────────────────────────────────────


@cli.command()
@click.argument("category", type=click.Choice([c.value for c in Category]))
@click.option(
    "--difficulty", "-d",
    type=click.Choice([d.value for d in Difficulty]),
    default=Difficulty.MEDIUM.value,
    help="Difficulty level",
)
@click.pass_context
def tip(ctx, category, difficulty):
    """Generate one tip for CATEGORY and print it."""
    from core.agent import tip_prefix

    db, agent = _build_agent(ctx.obj["settings"])
    try:
        cat, level = Category(category), Difficulty(difficulty)
        text = agent.generate_tip(cat, level)
        click.echo(f"\n{tip_prefix(cat, level)}\n{text}\n")
    finally:
        db.close()


@cli.command()
@click.option(
    "--category", "-c",
    type=click.Choice([c.value for c in Category]),
    default=None,
    help="Force a category instead of letting the agent choose",
)
@click.option("--reasoning", "-r", is_flag=True, help="Also print the agent's reasoning")
@click.option("--post", is_flag=True, help="Post the result to the configured Telegram chat")
@click.pass_context
def daily(ctx, category, reasoning, post):
    """Run the daily-tip flow once."""
    settings = ctx.obj["settings"]
    db, agent = _build_agent(settings)
    try:
        result = agent.generate_daily_tip(
            Category(category) if category else None,
            include_reasoning=reasoning,
        )
        click.echo(f"\n{result.prefix}\n{result.tip}\n")
        if result.thinking:
            click.echo(click.style("Reasoning:", bold=True))
            click.echo(f"{result.thinking}\n")

        if post:
            from platforms.telegram_channel import TelegramChannel
            channel = TelegramChannel(settings["telegram"])
            ok = channel.post_daily_tip(
                result, as_card=settings["telegram"].get("post_as_card", False)
            )
            if ok:
                click.echo(click.style("Posted to Telegram.", fg="green"))
            else:
                click.echo(click.style("Posting to Telegram failed.", fg="red"))
    finally:
        db.close()


@cli.command()
@click.pass_context
def reasoning(ctx):
    """Explain which tip the agent would send next, and why."""
    db, agent = _build_agent(ctx.obj["settings"])
    try:
        click.echo(f"\n{agent.get_agent_reasoning()}\n")
    finally:
        db.close()


# ─── STATUS ──────────────────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx):
    """Show stored tips, category history and config warnings."""
    from core.database import Database

    settings = ctx.obj["settings"]
    db = Database(settings["database"]["path"])

    click.echo("\n=== Tipsbot Status ===\n")
    schedule = settings.get("schedule", {})
    click.echo(
        f"Schedule: {schedule.get('cron')} ({schedule.get('timezone')})"
        f" | enabled: {schedule.get('enabled', True)}"
    )
    click.echo(f"Tips stored: {db.count_tips()} | DB size: {db.get_db_size_mb()} MB")

    from core.llm_provider import LLMProvider
    try:
        llm = LLMProvider("config/llm.yaml")
    except (OSError, yaml.YAMLError) as e:
        click.echo(f"LLM providers: unavailable ({e})")
    else:
        providers = llm.get_available_providers()
        click.echo(f"LLM providers: {', '.join(providers) if providers else 'none'}")
        for role, chain in llm.get_stats()["routing"].items():
            click.echo(f"  {role}: {' → '.join(p for p in chain if p in providers) or '-'}")

    click.echo("\n--- Categories ---")
    for category, stats in db.get_category_stats().items():
        last = stats.last_sent.strftime("%Y-%m-%d %H:%M") if stats.last_sent else "never"
        click.echo(f"  {category.value}: {stats.count} (last: {last})")

    click.echo("\n--- Recent Tips ---")
    recent = db.get_recent_tips(limit=5)
    if not recent:
        click.echo("  None")
    else:
        for t in recent:
            click.echo(f"  [{t.date:%Y-%m-%d}] {t.category.value}/{t.difficulty.value}: {t.preview(70)}")

    warnings = check_config_placeholders(settings, "settings.yaml")
    if warnings:
        click.echo(click.style("\n--- Config Warnings ---", fg="yellow"))
        for w in warnings:
            click.echo(w)

    db.close()


# ─── TEST ────────────────────────────────────────────────────────────


@cli.command()
@click.argument("service", type=click.Choice(["llm", "telegram", "all"]))
@click.pass_context
def test(ctx, service):
    """Test connectivity to services."""
    results = {}

    if service in ("llm", "all"):
        click.echo("\nTesting LLM providers...")
        from core.llm_provider import LLMProvider
        try:
            llm = LLMProvider("config/llm.yaml")
            for name, ok in llm.test_connection().items():
                results[f"llm/{name}"] = ok
        except Exception as e:
            results["llm"] = False
            click.echo(f"  Error: {e}")

    if service in ("telegram", "all"):
        click.echo("\nTesting Telegram...")
        from platforms.telegram_channel import TelegramChannel
        channel = TelegramChannel(ctx.obj["settings"]["telegram"])
        if channel.configured:
            results["telegram"] = channel.test_connection()
        else:
            results["telegram"] = False
            click.echo("  Telegram bot not configured (placeholder values)")

    click.echo("\n=== Test Results ===")
    for name, ok in results.items():
        icon = click.style("PASS", fg="green") if ok else click.style("FAIL", fg="red")
        click.echo(f"  {name}: {icon}")

    if not results:
        click.echo("  No services tested.")


if __name__ == "__main__":
    os.chdir(PROJECT_ROOT)
    cli()
