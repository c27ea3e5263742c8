"""CLI entry point for sol-smith."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from solsmith.app import SolSmithApp
from solsmith.config import AppConfig, load_config
from solsmith.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sol-smith",
        description="Telegram bot that grinds Solana vanity wallets",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the bot"),
        ("config-check", "Validate configuration"),
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
    gen = config.generator
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory : {config.data_dir}")
    print(f"  Users directory: {config.storage.users_dir}")
    print(f"  Generator tool : {gen.tool_path}")
    print(f"  Scratch dir    : {gen.scratch_dir}")
    print(f"  Timeout        : {f'{gen.timeout}s' if gen.timeout else '(none)'}")
    print(f"  Max concurrent : {gen.max_concurrent}")
    print(f"  Session idle   : {config.sessions.idle_timeout}s")
    print(f"  Telegram token : {'set' if config.telegram.token else '(missing)'}")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(_signal_handler))

        app = SolSmithApp(config)
        try:
            await app.start()
            await stop_event.wait()
        finally:
            await app.stop()

    try:
        asyncio.run(_async_main())
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
