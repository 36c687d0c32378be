#!/usr/bin/env python3
"""
Entry point for the timed quiz Discord bot.

Usage:
    python main.py [path/to/config.json]

The config path may also be given through QUIZ_CONFIG. DISCORD_BOT_TOKEN and
QUIZ_AUTHORITY_URL override the matching values in the config file.
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from timed_quiz.config_manager import ConfigManager


DEFAULT_CONFIG_PATH = "config.json"
CONFIG_PATH_ENV = "QUIZ_CONFIG"
TOKEN_ENV = "DISCORD_BOT_TOKEN"
TOKEN_PLACEHOLDER = "YOUR_DISCORD_BOT_TOKEN_HERE"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StartupError(Exception):
    """The bot cannot start with the given configuration."""


def read_config(path: Path) -> Dict[str, Any]:
    """Read the JSON configuration file."""
    if not path.is_file():
        raise StartupError(f"{path} not found. Create it and configure your Discord bot token.")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise StartupError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise StartupError(f"Could not read {path}: {e}") from e

    if not isinstance(config, dict):
        raise StartupError(f"{path} must contain a JSON object")
    return config


def resolve_token(config: Dict[str, Any]) -> str:
    """Pick the bot token, preferring the environment over the config file."""
    token = os.getenv(TOKEN_ENV) or config.get('bot', {}).get('token')
    if not token or token == TOKEN_PLACEHOLDER:
        raise StartupError(
            f"Discord bot token not configured. Set {TOKEN_ENV} or the 'bot.token' field."
        )
    return token


def check_client_config(config: Dict[str, Any]) -> List[str]:
    """Return every problem with the 'client' section without contacting anything."""
    manager = ConfigManager()
    problems = manager.apply_config(config)
    problems.extend(manager.validate_settings()['issues'])
    return problems


def configure_logging(config: Dict[str, Any]) -> Path:
    """
    Send logs to the console, to quiz_client.log, and errors alone to errors.log.

    Returns:
        The log directory
    """
    log_config = config.get('logging', {})
    level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "quiz_client.log", encoding='utf-8'),
            error_handler,
        ]
    )

    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)
    return log_directory


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    config_path = Path(args[0] if args else os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))

    try:
        config = read_config(config_path)
        configure_logging(config)
        problems = check_client_config(config)
        if problems:
            raise StartupError("Invalid client configuration:\n  " + "\n  ".join(problems))
        token = resolve_token(config)
    except StartupError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    from timed_quiz.bot import run_bot

    print(f"🤖 Starting Timed Quiz Bot with {config_path}...")
    try:
        asyncio.run(run_bot(token, config))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
