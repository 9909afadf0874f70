"""CLI entry point for zapgpt."""

from __future__ import annotations

import argparse
import asyncio
import sys

from zapgpt.config import AppConfig, load_config
from zapgpt.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="zapgpt",
        description="AI personas that answer WhatsApp contacts",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the server"),
        ("config-check", "Validate configuration"),
        ("bots", "List stored bots and their AI models"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "bots":
        _list_bots(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    engine = config.engine
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory : {config.data_dir}")
    print(f"  Storage        : {config.storage.db_path}")
    print(f"  WPPConnect     : {config.whatsapp.base_url}")
    print(f"  Webhook        : {config.whatsapp.webhook_url}")
    if not config.whatsapp.secret_key:
        print("  Warning        : whatsapp.secret_key is empty")
    print(f"  Debounce       : {engine.debounce_seconds}s")
    print(f"  AI attempts    : {engine.max_ai_attempts}")
    print(f"  Typing delay   : {engine.typing_delay_per_char}s/char")
    print(f"  Server         : {config.server.host}:{config.server.port}")


def _list_bots(config_path: str, env_path: str) -> None:
    """Show every stored bot with its model and connection flags."""
    from zapgpt.storage.database import Database
    from zapgpt.storage.repository import Repository

    config = _load_or_exit(config_path, env_path)

    async def _fetch():
        db = Database(config.storage.db_path)
        await db.initialize()
        try:
            return await Repository(db).list_bots()
        finally:
            await db.close()

    setup_logging("WARNING", config.log_format)
    bots = asyncio.run(_fetch())

    print("Bots")
    print("=" * 50)
    if not bots:
        print("  (none)")
    for bot in bots:
        print(f"\n  Bot: {bot.name} ({bot.id})")
        print(f"    Model     : {bot.model}")
        print(f"    Session   : {bot.session_name}")
        print(f"    Active    : {bot.is_active}")
        print(f"    Connected : {bot.is_connected}")
        print(f"    Messages  : {bot.message_count}")
    print()


def _run(config_path: str, env_path: str) -> None:
    """Load config and serve the HTTP relay until interrupted."""
    import uvicorn

    from zapgpt.app import ZapGPTApp
    from zapgpt.web.server import create_app

    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    web_app = create_app(ZapGPTApp(config))
    uvicorn.run(web_app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
