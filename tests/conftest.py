from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from mautrix.types import Membership

from matrix_notify.infra.config import NotifyConfig

SELF_ID = "@compute-notify:example.org"
TARGET_ID = "@alice:example.org"


def member_event(user_id: str, membership: Membership = Membership.JOIN) -> SimpleNamespace:
    """Stand-in for an m.room.member StateEvent as returned by get_members()."""
    return SimpleNamespace(state_key=user_id, content=SimpleNamespace(membership=membership))


@pytest.fixture
def cfg() -> NotifyConfig:
    return NotifyConfig(
        homeserver="https://matrix.example.org",
        user_id=SELF_ID,
        password="hunter2",
        access_token="syt_token",
        device_id="DEVICE",
    )


@pytest.fixture
def fake_client() -> MagicMock:
    client = MagicMock()
    client.whoami = AsyncMock(return_value=SimpleNamespace(user_id=SELF_ID, device_id="DEVICE"))
    client.get_joined_rooms = AsyncMock(return_value=[])
    client.get_members = AsyncMock(return_value=[])
    client.create_room = AsyncMock(return_value="!new:example.org")
    client.send_message = AsyncMock(return_value="$event")
    client.upload_media = AsyncMock(return_value="mxc://example.org/media")
    client.send_file = AsyncMock(return_value="$file")
    client.api.get_txn_id = MagicMock(return_value="txn-1")
    client.api.session.closed = False
    client.api.session.close = AsyncMock()
    return client


@pytest.fixture
def client_factory(fake_client: MagicMock) -> MagicMock:
    return MagicMock(return_value=fake_client)
