"""Command-line interface for muip-relay."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from . import constants
from .adapters import DispatchClient
from .app import RelayApp, build_pipeline
from .config import RelayConfig, load_config, save_config
from .errors import RelayError
from .logging import configure_logging
from .pipeline import CommandPipeline

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="muip-relay", description="Relay gateway for the dispatch admin API"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the relay gateway")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )
    subparsers.add_parser(
        "init-config", help="Write the resolved configuration to the config path"
    )

    exec_parser = subparsers.add_parser("exec", help="Run a single admin command")
    exec_parser.add_argument("--uid", required=True, help="Target player uid")
    exec_parser.add_argument(
        "--command", dest="admin_command", required=True, help="Command text"
    )
    exec_parser.add_argument("--key-type", default=None, help="Session key type")

    subparsers.add_parser("status", help="Query dispatch server information")

    player_parser = subparsers.add_parser("player", help="Query player information")
    player_parser.add_argument("--uid", required=True, help="Player uid")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "start":
        RelayApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "init-config":
        save_config(config)
        print(f"Configuration written to {config.path!s}")
        return 0

    configure_logging(
        config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
    )

    if args.command == "exec":
        return _run_one_shot(
            config,
            lambda pipeline: _exec(pipeline, args.key_type, args.uid, args.admin_command),
        )

    if args.command == "status":
        return _run_one_shot(config, _status)

    if args.command == "player":
        return _run_one_shot(config, lambda pipeline: _player(pipeline, args.uid))

    LOGGER.error("Unknown command: %s", args.command)
    return 1


async def _exec(
    pipeline: CommandPipeline, key_type: Optional[str], uid: str, command: str
) -> Dict[str, Any]:
    result = await pipeline.run(key_type, uid, command)
    return result.as_dict()


async def _status(pipeline: CommandPipeline) -> Dict[str, Any]:
    return (await pipeline.query_status()).as_dict()


async def _player(pipeline: CommandPipeline, uid: str) -> Dict[str, Any]:
    return (await pipeline.query_player_info(uid)).as_dict()


def _run_one_shot(
    config: RelayConfig,
    action: Callable[[CommandPipeline], Awaitable[Dict[str, Any]]],
) -> int:
    async def _runner() -> Dict[str, Any]:
        async with DispatchClient(config.dispatch) as client:
            return await action(build_pipeline(config, client))

    try:
        payload = asyncio.run(_runner())
    except RelayError as exc:
        LOGGER.error("Request failed: %s", exc)
        return 1

    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0 if payload.get("success", True) else 1


if __name__ == "__main__":
    sys.exit(main())
