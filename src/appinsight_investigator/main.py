import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

from .settings import DEFAULT_CONFIG_PATH, Settings, SettingsStore
from .shell import InvestigatorShell


def setup_logging(settings: Settings, level: str | None = None) -> logging.Logger:
    """Configure and return the package logger.

    Everything at the configured level goes to a rotating file; only
    errors reach the console. Handled backend failures are logged at
    WARNING, so the shell's own one-line messages are all the operator sees.
    """
    logger = logging.getLogger("appinsight_investigator")
    if logger.handlers:
        return logger

    logger.setLevel(level or settings.log_level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setLevel(logging.ERROR)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            settings.log_dir / "investigator.log", maxBytes=5_000_000, backupCount=3
        )
    except OSError as e:
        logger.warning("File logging disabled: %s", e)
    else:
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appinsight-investigator",
        description="Investigate Azure Application Insights sessions with an LLM.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path of the stored settings file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override the configured log level",
    )
    return parser


def main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    store = SettingsStore(args.config)
    logger = setup_logging(store.settings, args.log_level)
    logger.info("Starting investigator (config: %s)", args.config)

    shell = InvestigatorShell(store)
    try:
        asyncio.run(shell.run())
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        print(f"\nFatal error: {e}", file=sys.stderr)
        return 1
    return 0
