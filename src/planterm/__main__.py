"""CLI entry point for planterm."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .cli.plan import PLAN_MODES
from .config import PROVIDERS, AppConfig, ensure_data_dir, load_config

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(debug: bool, data_dir: Path) -> None:
    """Log to ``debug.log`` in the data dir when debugging; otherwise discard log records."""
    root = logging.getLogger("planterm")
    if debug:
        data_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(data_dir / "debug.log", encoding="utf-8")
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.setLevel(logging.DEBUG)
    else:
        # The terminal belongs to the REPL.
        handler = logging.NullHandler()
        root.setLevel(logging.WARNING)
    root.addHandler(handler)


def _load_config_or_exit(config_path: Path | None = None, provider: str | None = None) -> AppConfig:
    try:
        return load_config(config_path, provider=provider)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> None:
    if args.model:
        config.provider.model = args.model
    if args.debug:
        config.cli.debug = True


def _run_chat(config: AppConfig, prompt: str | None, new_session: bool, mode: str | None) -> int:
    from .cli.repl import run_cli

    try:
        return asyncio.run(run_cli(config, prompt=prompt, new_session=new_session, mode=mode))
    except (KeyboardInterrupt, asyncio.CancelledError):
        return 130


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="planterm", description="planterm - plan software work with an AI assistant")
    parser.add_argument("prompt", nargs="?", default=None, help="One-shot prompt (omit for the interactive REPL)")
    parser.add_argument("-n", "--new", dest="new_session", action="store_true", help="Start a new planning session")
    parser.add_argument("-m", "--mode", choices=PLAN_MODES, default=None, help="Planning mode for this session")
    parser.add_argument("--model", default=None, help="Override the model (openai provider)")
    parser.add_argument("--provider", choices=PROVIDERS, default=None, help="Override the provider")
    parser.add_argument("--config", dest="config_path", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--debug", action="store_true", help="Write debug logs to <data_dir>/debug.log")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)

    config = _load_config_or_exit(args.config_path, args.provider)
    _apply_overrides(config, args)
    ensure_data_dir(config)
    _configure_logging(config.cli.debug, config.app.data_dir)
    logging.getLogger(__name__).debug("planterm %s starting", __version__)

    sys.exit(_run_chat(config, args.prompt, args.new_session, args.mode))


if __name__ == "__main__":
    main()
