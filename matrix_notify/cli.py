"""Command-line argument parsing for ``matrix-notify``."""

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

from matrix_notify.core.errors import NotifyError

_EPILOG = """
Examples:

Send a text message (the DM room is created on first use):

    matrix-notify @juser:matrix.org text "Build $(hostname) finished"

Send command output as a notice:

    make test 2>&1 | tail -n 20 | matrix-notify @juser:matrix.org text --notice -

Send a file:

    matrix-notify @juser:matrix.org attachment results.csv -d "nightly results"
"""


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="matrix-notify",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Send matrix messages and attachments to specified users",
        epilog=_EPILOG,
    )
    p.add_argument(
        "target_user",
        help="matrix user id (including homeserver) to send the message to, "
             "e.g. @username:matrix.org",
    )
    p.add_argument("--config", "-c", type=Path, metavar="CONFIG_FILENAME",
                   help="configuration file (default: $MATRIX_NOTIFY_CONFIG, "
                        "./config.yaml, ~/.config/matrix-notify/config.yaml)")
    p.add_argument("--verbose", "-v", action="count", default=0,
                   help="log more (-v info, -vv debug)")

    sub = p.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    text = sub.add_parser("text", help="send a message with text content")
    text.add_argument("text", help="content of the message to send ('-' reads stdin)")
    text.add_argument("--notice", action="store_true",
                      help="send as m.notice (rendered as a bot message by most clients)")

    attachment = sub.add_parser("attachment", help="send a message with an attachment")
    attachment.add_argument("path", type=Path, help="file to upload and send")
    attachment.add_argument("--description", "-d",
                            help="body text of the file message (default: the file name)")
    return p


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def message_text(args: argparse.Namespace, stdin: Optional[TextIO] = None) -> str:
    """Return the text to send for the ``text`` subcommand."""
    if args.text == "-":
        try:
            text = (stdin or sys.stdin).read()
        except UnicodeDecodeError as exc:
            raise NotifyError(f"Could not read the message from stdin: {exc}") from exc
    else:
        text = args.text
    if not text.strip():
        raise NotifyError("Refusing to send an empty message")
    return text
