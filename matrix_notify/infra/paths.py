"""Canonical file locations used by matrix-notify."""

from pathlib import Path

CONFIG_ENV_VAR = "MATRIX_NOTIFY_CONFIG"

LOCAL_CONFIG_FILE = Path("config.yaml")
USER_CONFIG_DIR = Path.home() / ".config" / "matrix-notify"
USER_CONFIG_FILE = USER_CONFIG_DIR / "config.yaml"
