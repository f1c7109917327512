"""
Config file loading and credential write-back.

The config is YAML with a ``matrix:`` section and an optional ``logging:``
section::

    matrix:
      homeserver: https://matrix.org
      user_id: "@compute-notify:matrix.org"
      password: "..."
      # access_token / device_id are filled in after the first login
      room_name: compute-notify
    logging:
      level: WARNING
      file: logs/matrix-notify.log

The flat JSON layout of older installs (``homeserver_url``,
``matrix_username``, ``matrix_password``) is still accepted.
"""

import logging
import os
import tempfile
from collections.abc import MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml
from ruamel.yaml import YAML
from ruamel.yaml.scalarstring import DoubleQuotedScalarString

from matrix_notify.core.errors import ConfigError, InvalidUserIdError
from matrix_notify.core.identifiers import parse_user_id
from matrix_notify.infra import paths

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_NAME = "matrix-notify"
DEFAULT_ROOM_NAME = "compute-notify"

# old flat key -> matrix: section key
_LEGACY_KEYS = {
    "homeserver_url": "homeserver",
    "matrix_username": "user_id",
    "matrix_password": "password",
}


@dataclass
class NotifyConfig:
    homeserver: str
    user_id: str
    password: str = ""
    access_token: str = ""
    device_id: str = ""
    device_name: str = DEFAULT_DEVICE_NAME
    room_name: str = DEFAULT_ROOM_NAME
    store_credentials: bool = True
    log_level: str = "WARNING"
    log_file: str = ""
    path: Optional[Path] = None


def resolve_config_path(explicit: Optional[Path] = None) -> Path:
    """Pick the config file: explicit > $MATRIX_NOTIFY_CONFIG > ./config.yaml > user dir."""
    if explicit is not None:
        return Path(explicit)
    env = os.environ.get(paths.CONFIG_ENV_VAR)
    if env:
        return Path(env)
    if paths.LOCAL_CONFIG_FILE.exists():
        return paths.LOCAL_CONFIG_FILE
    return paths.USER_CONFIG_FILE


def load_config(path: Optional[Path] = None) -> NotifyConfig:
    path = resolve_config_path(path)
    if not path.is_file():
        raise ConfigError(
            f"{path} not found. Copy config.yaml.example and fill in your settings."
        )
    try:
        with path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not deserialize config file {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} does not contain a mapping at its root")
    return config_from_mapping(raw, path)


def config_from_mapping(raw: dict, path: Optional[Path] = None) -> NotifyConfig:
    matrix = raw.get("matrix")
    if matrix is None:
        matrix = {new: raw[old] for old, new in _LEGACY_KEYS.items() if old in raw}
    elif not isinstance(matrix, dict):
        raise ConfigError("'matrix' section must be a mapping")

    log_raw = raw.get("logging") or {}
    if not isinstance(log_raw, dict):
        raise ConfigError("'logging' section must be a mapping")

    homeserver = _validate_homeserver(_str(matrix.get("homeserver")))

    user_id = _str(matrix.get("user_id")).strip()
    if not user_id:
        raise ConfigError("matrix.user_id is required")
    if user_id.startswith("@"):
        try:
            parse_user_id(user_id)
        except InvalidUserIdError as exc:
            raise ConfigError(f"matrix.user_id is invalid: {exc}") from exc

    password = _str(matrix.get("password"))
    access_token = _str(matrix.get("access_token")).strip()
    if not password and not access_token:
        raise ConfigError(
            "matrix: no access_token and no password configured. "
            "Set at least one in the config file."
        )

    store = matrix.get("store_credentials", True)
    if store is None:
        store = True
    if not isinstance(store, bool):
        # A quoted "false" would otherwise be truthy.
        raise ConfigError(
            f"matrix.store_credentials must be true or false, got {store!r}"
        )

    return NotifyConfig(
        homeserver=homeserver,
        user_id=user_id,
        password=password,
        access_token=access_token,
        device_id=_str(matrix.get("device_id")).strip(),
        device_name=_str(matrix.get("device_name")).strip() or DEFAULT_DEVICE_NAME,
        room_name=_str(matrix.get("room_name")).strip() or DEFAULT_ROOM_NAME,
        store_credentials=store,
        log_level=_str(log_raw.get("level")).strip().upper() or "WARNING",
        log_file=_str(log_raw.get("file")).strip(),
        path=path,
    )


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def _validate_homeserver(url: str) -> str:
    url = url.strip()
    if not url:
        raise ConfigError("matrix.homeserver is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(
            f"Failed to parse a url from the provided homeserver url `{url}`"
        )
    return url.rstrip("/")


# ---------------------------------------------------------------------------
# Credential write-back
# ---------------------------------------------------------------------------


def store_credentials(path: Path, access_token: str, device_id: str) -> bool:
    """Write *access_token* and *device_id* back into the config file in-place.

    Uses ruamel.yaml round-trip parsing so comments and key order survive.
    Values are stored as double-quoted scalars so that PyYAML's safe_load()
    reads them back as strings.  The write goes through a tempfile +
    os.replace so an interrupted run never leaves a truncated file.

    Returns ``True`` if the file was updated.  JSON documents (by suffix or
    by content), files that cannot be parsed and files without a
    ``matrix:`` mapping are left alone.
    """
    if not path.exists():
        return False
    if path.suffix.lower() == ".json":
        logger.info("store_credentials: %s is JSON, not rewriting it", path)
        return False

    ryaml = YAML()
    ryaml.preserve_quotes = True

    try:
        text = path.read_text(encoding="utf-8")
        # A flow-style document would come back out as block YAML.
        if text.lstrip().startswith("{"):
            logger.info("store_credentials: %s holds a JSON document, not rewriting it", path)
            return False
        data = ryaml.load(text)
    except Exception:
        logger.warning("store_credentials: failed to parse %s, skipping write", path, exc_info=True)
        return False

    if not isinstance(data, MutableMapping):
        logger.warning("store_credentials: %s does not contain a YAML mapping at root, skipping write", path)
        return False
    if not isinstance(data.get("matrix"), MutableMapping):
        logger.warning("store_credentials: 'matrix' section missing or not a mapping in %s, skipping write", path)
        return False

    data["matrix"]["access_token"] = DoubleQuotedScalarString(access_token)
    data["matrix"]["device_id"] = DoubleQuotedScalarString(device_id)

    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), suffix=".tmp", prefix=".config_",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            fd = -1  # fdopen took ownership of the descriptor
            ryaml.dump(data, f)
        os.replace(tmp_path, str(path))
    except BaseException:
        if fd >= 0:
            os.close(fd)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return True
