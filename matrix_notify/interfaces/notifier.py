"""
Matrix Notifier

Logs into the homeserver via mautrix-python, finds (or creates) the direct
message room shared with a target user and sends a text message or a file
into it.  There is no sync loop: every call is a plain Client-Server API
request, so a run is one short linear sequence

  login -> joined rooms -> member events -> create room if absent -> send

and the process exits afterwards.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from mautrix.client import Client
from mautrix.errors import MatrixError, MUnknownToken
from mautrix.types import (
    DeviceID,
    EventID,
    Membership,
    MessageType,
    RoomCreatePreset,
    RoomDirectoryVisibility,
    RoomID,
    TextMessageEventContent,
    UserID,
)

from matrix_notify.core.errors import (
    AttachmentError,
    LoginError,
    MatrixRequestError,
    is_transient,
    wrap_matrix_error,
)
from matrix_notify.core.identifiers import parse_user_id
from matrix_notify.infra import config as config_module
from matrix_notify.infra.config import NotifyConfig

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Client]

# Memberships that still count a user as part of a room.
_ACTIVE_MEMBERSHIPS = (Membership.JOIN, Membership.INVITE)


class MatrixNotifier:
    """
    One-shot Matrix sender.  ``login()`` first, then any number of
    ``send_text`` / ``send_attachment`` calls, then ``close()``.  Also usable
    as ``async with MatrixNotifier(cfg) as notifier: ...`` which logs in on
    entry and closes on exit.
    """

    def __init__(self, config: NotifyConfig, *,
                 client_factory: Optional[ClientFactory] = None,
                 retries: int = 3, retry_delay: float = 2.0) -> None:
        self._cfg = config
        self._client_factory: ClientFactory = client_factory or Client
        self._client: Optional[Client] = None
        self._retries = max(1, retries)
        self._retry_delay = retry_delay
        self.user_id: Optional[UserID] = None

    async def __aenter__(self) -> "MatrixNotifier":
        try:
            await self.login()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    @property
    def client(self) -> Client:
        if self._client is None:
            raise RuntimeError("MatrixNotifier.login() must be called first")
        return self._client

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self) -> UserID:
        """Authenticate and return the full user ID the homeserver knows us as.

        A configured access token is tried first.  If the homeserver rejects
        it and a password is configured, fall back to a password login.
        """
        if self._cfg.access_token:
            try:
                return await self._login_with_token()
            except MUnknownToken as exc:
                await self.close()
                if not self._cfg.password:
                    raise LoginError(
                        "The configured access token is invalid or expired and no "
                        "password is configured for automatic re-login.",
                        errcode=exc.errcode or "M_UNKNOWN_TOKEN",
                    ) from exc
                logger.info("Access token rejected, logging in with stored password")
        return await self._login_with_password()

    async def _login_with_token(self) -> UserID:
        self._client = self._make_client(self._cfg.access_token, self._cfg.device_id)
        try:
            resp = await self._client.whoami()
        except MUnknownToken:
            raise
        except (MatrixError, aiohttp.ClientError) as exc:
            raise wrap_matrix_error(exc, "verify the access token") from exc
        self._set_identity(resp.user_id, resp.device_id)
        logger.info("Logged in with access token as %s", self.user_id)
        return self.user_id

    async def _login_with_password(self) -> UserID:
        payload: dict[str, Any] = {
            "type": "m.login.password",
            "identifier": {"type": "m.id.user", "user": self._cfg.user_id},
            "password": self._cfg.password,
            "initial_device_display_name": self._cfg.device_name,
        }
        if self._cfg.device_id:
            payload["device_id"] = self._cfg.device_id

        data = await self._post_login(payload)
        if not isinstance(data, dict) or "access_token" not in data:
            data = data if isinstance(data, dict) else {}
            raise LoginError(
                f"Matrix login failed: {data.get('error', 'unknown error')} "
                f"({data.get('errcode', '')})",
                errcode=data.get("errcode", ""),
            )

        token = data["access_token"]
        device_id = data.get("device_id", "")
        self._cfg.access_token = token
        self._cfg.device_id = device_id
        self._client = self._make_client(token, device_id)
        user_id = data.get("user_id")
        if not user_id:
            # Pre-r0 servers may omit user_id; the configured value can be a bare localpart.
            try:
                user_id = (await self._client.whoami()).user_id
            except (MatrixError, aiohttp.ClientError) as exc:
                raise wrap_matrix_error(exc, "look up the logged-in user") from exc
        self._set_identity(user_id, device_id)
        logger.info("Password login successful as %s (device_id=%s)", self.user_id, device_id)

        if self._cfg.store_credentials and self._cfg.path is not None:
            if config_module.store_credentials(self._cfg.path, token, device_id):
                logger.info("Credentials written to %s", self._cfg.path)
        return self.user_id

    async def _post_login(self, payload: dict) -> Any:
        url = f"{self._cfg.homeserver.rstrip('/')}/_matrix/client/v3/login"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(url, json=payload) as resp:
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as exc:
            raise LoginError(f"Matrix login request to {url} failed: {exc}") from exc

    def _make_client(self, token: str, device_id: str) -> Client:
        # No mxid yet: the config may hold a bare localpart, which mautrix
        # rejects.  _set_identity fills in the ID the homeserver returns.
        return self._client_factory(
            device_id=DeviceID(device_id),
            base_url=self._cfg.homeserver,
            token=token,
        )

    def _set_identity(self, user_id: str, device_id: Optional[str]) -> None:
        self.user_id = UserID(user_id)
        self.client.mxid = self.user_id
        if device_id:
            self.client.device_id = DeviceID(device_id)

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        session = getattr(getattr(client, "api", None), "session", None)
        if session is not None and not session.closed:
            await session.close()

    # ------------------------------------------------------------------
    # Room lookup
    # ------------------------------------------------------------------

    async def find_direct_room(self, target: UserID) -> Optional[RoomID]:
        """Return the first joined room whose active members are exactly us and *target*.

        Members are active while their membership is ``join`` or ``invite``,
        so a DM we created whose invite is still pending is found again on
        the next run.  A room the target left or was banned from is never
        returned.
        """
        wanted = {self.user_id, target}
        rooms = await self._with_retries("list joined rooms", self.client.get_joined_rooms)
        logger.debug("Checking %d joined rooms for a DM with %s", len(rooms), target)
        for room_id in rooms:
            try:
                events = await self._with_retries(
                    f"read members of {room_id}", self.client.get_members, room_id,
                )
            except MatrixRequestError as exc:
                # Rooms we can no longer read (forbidden, gone) are not DM candidates.
                if exc.http_status is not None and 400 <= exc.http_status < 500:
                    logger.warning("Skipping room %s: %s", room_id, exc)
                    continue
                raise
            active = {
                UserID(evt.state_key)
                for evt in events
                if evt.content.membership in _ACTIVE_MEMBERSHIPS
            }
            if active == wanted:
                logger.info("Found existing DM room %s with %s", room_id, target)
                return room_id
        return None

    async def create_direct_room(self, target: UserID) -> RoomID:
        invitees = [] if target == self.user_id else [target]
        # Room creation is not idempotent; a retry after a lost reply would
        # leave a second DM room behind, so it gets exactly one attempt.
        room_id = await self._request_once(
            "create room",
            self.client.create_room,
            visibility=RoomDirectoryVisibility.PRIVATE,
            preset=RoomCreatePreset.PRIVATE,
            name=self._cfg.room_name,
            is_direct=True,
            invitees=invitees,
        )
        logger.info("Created DM room %s (%s) for %s", room_id, self._cfg.room_name, target)
        return room_id

    async def get_room_id(self, target: UserID) -> RoomID:
        room_id = await self.find_direct_room(target)
        if room_id is None:
            room_id = await self.create_direct_room(target)
        return room_id

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_text(self, target: str, text: str, *, notice: bool = False) -> EventID:
        target_id = _target_user_id(target)
        room_id = await self.get_room_id(target_id)
        content = TextMessageEventContent(
            msgtype=MessageType.NOTICE if notice else MessageType.TEXT,
            body=text,
        )
        # One transaction ID for every attempt, so the homeserver
        # deduplicates a retry whose first try did land.
        event_id = await self._with_retries(
            "send message", self.client.send_message, room_id, content,
            txn_id=self.client.api.get_txn_id(),
        )
        logger.info("Sent message %s to %s", event_id, room_id)
        return event_id

    async def send_attachment(self, target: str, path: Path | str,
                              description: Optional[str] = None) -> EventID:
        """Upload *path* and send it into the DM room with *target*.

        Images go out as ``m.image`` so clients render them inline; anything
        else is an ``m.file``.  The event body is *description* when given,
        otherwise the file name.
        """
        target_id = _target_user_id(target)
        p = Path(path)
        data = _read_attachment(p)
        mime_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        file_size = len(data)

        room_id = await self.get_room_id(target_id)

        mxc_uri = await self._with_retries(
            "upload attachment",
            self.client.upload_media,
            data, mime_type=mime_type, filename=p.name, size=file_size,
        )
        file_type = MessageType.IMAGE if mime_type.startswith("image/") else MessageType.FILE
        event_id = await self._with_retries(
            "send attachment",
            self.client.send_file,
            room_id,
            mxc_uri,
            info={"mimetype": mime_type, "size": file_size},
            file_name=description or p.name,
            file_type=file_type,
            txn_id=self.client.api.get_txn_id(),
        )
        logger.info("Sent file %s (%s, %d bytes) to %s", p.name, mime_type, file_size, room_id)
        return event_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _with_retries(self, action: str, func: Callable[..., Awaitable[Any]],
                            *args: Any, **kwargs: Any) -> Any:
        """Await ``func(*args, **kwargs)``, retrying transient failures.

        Raises :class:`MatrixRequestError` once the attempts are used up or
        on the first non-transient failure.
        """
        attempt = 1
        while True:
            try:
                return await func(*args, **kwargs)
            except (MatrixError, aiohttp.ClientError) as exc:
                if not is_transient(exc) or attempt >= self._retries:
                    raise wrap_matrix_error(exc, action) from exc
                logger.warning(
                    "Matrix %s failed (attempt %d/%d): %s",
                    action, attempt, self._retries, exc,
                )
            await asyncio.sleep(self._retry_delay * attempt)
            attempt += 1

    async def _request_once(self, action: str, func: Callable[..., Awaitable[Any]],
                            *args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except (MatrixError, aiohttp.ClientError) as exc:
            raise wrap_matrix_error(exc, action) from exc


def _target_user_id(target: str) -> UserID:
    parse_user_id(target)
    return UserID(target.strip())


def _read_attachment(path: Path) -> bytes:
    if path.is_dir():
        raise AttachmentError("The provided attachment path was a directory, not a file")
    try:
        return path.read_bytes()
    except OSError as exc:
        raise AttachmentError(
            f"Error opening the provided attachment path: `{exc}`"
        ) from exc
