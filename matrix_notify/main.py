"""
matrix-notify - send a Matrix DM from the command line.
Entry point and orchestration.

Sequence:
  1. Parse arguments
  2. Load the config file
  3. Configure logging
  4. Log in, find or create the DM room, send
  5. Exit 0, or print the error and exit 1
"""

import argparse
import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Sequence

from matrix_notify import cli
from matrix_notify.core.errors import ConfigError, NotifyError
from matrix_notify.core.identifiers import parse_user_id
from matrix_notify.infra.config import NotifyConfig, load_config
from matrix_notify.interfaces.notifier import MatrixNotifier

logger = logging.getLogger("main")


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(cfg: NotifyConfig, verbosity: int = 0) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = getattr(logging, cfg.log_level.upper(), logging.WARNING)

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)-20s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    # Open the log file before touching the root logger.
    fh = None
    if cfg.log_file:
        log_path = Path(cfg.log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.handlers.TimedRotatingFileHandler(
                log_path,
                when="midnight",
                backupCount=14,
                encoding="utf-8",
            )
        except OSError as exc:
            raise ConfigError(f"Cannot open log file {log_path}: {exc}") from exc
        fh.setFormatter(fmt)
        fh.setLevel(logging.DEBUG)

    # stderr keeps stdout free for whatever the caller pipes around us.
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(fmt)
    console.setLevel(level)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if fh is not None else level)
    root.addHandler(console)
    if fh is not None:
        root.addHandler(fh)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

async def notify(cfg: NotifyConfig, args: argparse.Namespace,
                 text: Optional[str] = None) -> None:
    async with MatrixNotifier(cfg) as notifier:
        if args.command == "text":
            await notifier.send_text(args.target_user, text, notice=args.notice)
        else:
            await notifier.send_attachment(args.target_user, args.path, args.description)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = cli.parse_args(argv)
    try:
        parse_user_id(args.target_user)
        cfg = load_config(args.config)
        setup_logging(cfg, args.verbose)
        text = cli.message_text(args) if args.command == "text" else None
        logger.debug("Using config %s, homeserver %s", cfg.path, cfg.homeserver)
        asyncio.run(notify(cfg, args, text))
    except NotifyError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())


def run() -> None:
    """Entry point for the `matrix-notify` console script."""
    sys.exit(main())
