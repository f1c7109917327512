import io
from pathlib import Path

import pytest

from matrix_notify import cli
from matrix_notify.core.errors import NotifyError


def test_parse_text() -> None:
    args = cli.parse_args(["@alice:matrix.org", "text", "hello world"])
    assert args.target_user == "@alice:matrix.org"
    assert args.command == "text"
    assert args.text == "hello world"
    assert args.notice is False
    assert args.config is None
    assert args.verbose == 0


def test_parse_attachment_with_options() -> None:
    args = cli.parse_args(
        ["-c", "notify.yaml", "-vv", "@alice:matrix.org", "attachment", "out.log", "-d", "nightly"]
    )
    assert args.command == "attachment"
    assert args.path == Path("out.log")
    assert args.description == "nightly"
    assert args.config == Path("notify.yaml")
    assert args.verbose == 2


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit) as ei:
        cli.parse_args(["@alice:matrix.org"])
    assert ei.value.code == 2


def test_unknown_subcommand() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["@alice:matrix.org", "shout", "hi"])


def test_message_text_from_argument() -> None:
    args = cli.parse_args(["@alice:matrix.org", "text", "--notice", "done"])
    assert cli.message_text(args, stdin=io.StringIO("ignored")) == "done"
    assert args.notice is True


def test_message_text_from_stdin() -> None:
    args = cli.parse_args(["@alice:matrix.org", "text", "-"])
    assert cli.message_text(args, stdin=io.StringIO("line 1\nline 2\n")) == "line 1\nline 2\n"


def test_empty_message_rejected() -> None:
    args = cli.parse_args(["@alice:matrix.org", "text", "-"])
    with pytest.raises(NotifyError, match="empty"):
        cli.message_text(args, stdin=io.StringIO("  \n"))


def test_undecodable_stdin_is_notify_error() -> None:
    args = cli.parse_args(["@alice:matrix.org", "text", "-"])
    stdin = io.TextIOWrapper(io.BytesIO(b"\xff\xfebuild log"), encoding="utf-8")
    with pytest.raises(NotifyError, match="Could not read the message from stdin"):
        cli.message_text(args, stdin=stdin)
