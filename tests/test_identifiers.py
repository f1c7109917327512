import pytest

from matrix_notify.core.errors import InvalidUserIdError
from matrix_notify.core.identifiers import parse_user_id


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("@alice:matrix.org", ("alice", "matrix.org")),
        ("@compute-notify:example.org:8448", ("compute-notify", "example.org:8448")),
        ("@bot.one_2=x:[::1]", ("bot.one_2=x", "[::1]")),
    ],
)
def test_parse_user_id(raw, expected) -> None:
    assert parse_user_id(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["", "alice", "@alice", "alice:matrix.org", "@:matrix.org", "@alice:", "@al ice:matrix.org", "#room:matrix.org"],
)
def test_parse_user_id_rejects(raw) -> None:
    with pytest.raises(InvalidUserIdError):
        parse_user_id(raw)
