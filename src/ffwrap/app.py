from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys
from typing import Iterable, Optional

from ffwrap.config import ConfigError, ConfigLoader
from ffwrap.errors import InvocationError
from ffwrap.invoker import FFmpeg, FFprobe
from ffwrap.logging_utils import LoggerFactory

TOOLS = {"ffmpeg": FFmpeg, "ffprobe": FFprobe}


def main(argv: Optional[Iterable[str]] = None) -> int:
    own_args, tool_args = _split_tool_args(argv)
    args = _parse_args(own_args, tool_args)
    try:
        config_path = Path(args.config) if args.config else None
        config = ConfigLoader(config_path=config_path).load()
    except ConfigError as exc:
        LoggerFactory.create("")
        logging.getLogger("ffwrap").error("Config error: %s", exc)
        return 2

    # Configure the root logger so every class logger is captured.
    LoggerFactory.create("", log_file=config.logging.file_path, level=config.logging.level)
    logger = logging.getLogger("ffwrap")

    try:
        invoker = TOOLS[args.tool].from_config(config.invoker, path=args.binary)
        if args.command == "version":
            print(invoker.version())
        else:
            invoker.run(tool_args)
    except InvocationError as exc:
        logger.error("%s", exc)
        return 1
    return 0


def _split_tool_args(argv: Optional[Iterable[str]]) -> tuple[list[str], list[str]]:
    # Everything after "--" belongs to the tool, even when it looks like an option.
    args = list(sys.argv[1:] if argv is None else argv)
    if "--" not in args:
        return args, []
    index = args.index("--")
    return args[:index], args[index + 1 :]


def _parse_args(argv: list[str], tool_args: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ffwrap", description="Run ffmpeg/ffprobe with bounded waits"
    )
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument(
        "--tool",
        choices=sorted(TOOLS),
        default="ffmpeg",
        help="Which binary to invoke",
    )
    parser.add_argument("--binary", help="Override the configured binary path")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("version", help="Print the first line of -version output")
    subparsers.add_parser(
        "run", help="Run the binary with the arguments after --, forwarding its output"
    )
    args = parser.parse_args(argv)
    if args.command == "version" and tool_args:
        parser.error("version does not take tool arguments")
    return args


if __name__ == "__main__":
    raise SystemExit(main())
