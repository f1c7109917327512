"""Matrix user ID parsing."""

import re

from matrix_notify.core.errors import InvalidUserIdError

# @localpart:server.name[:port]  (IPv6 literals in brackets allowed)
_USER_ID_RE = re.compile(r"^@([^:\s]+):((?:\[[0-9A-Fa-f:.]+\]|[A-Za-z0-9.\-]+)(?::\d{1,5})?)$")


def parse_user_id(raw: str) -> tuple[str, str]:
    """Split ``@localpart:server`` into ``(localpart, server)``.

    Raises :class:`InvalidUserIdError` for anything else.
    """
    m = _USER_ID_RE.match(raw.strip()) if raw else None
    if m is None:
        raise InvalidUserIdError(raw)
    return m.group(1), m.group(2)
