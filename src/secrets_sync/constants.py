"""Global constants and path definitions for secrets-sync.

This module defines the filesystem layout (adhering to XDG standards where
applicable), application identifiers, and the cryptographic and network
defaults used across the application.
"""

import os
from pathlib import Path

# --- Identity ---
APP_NAME = "secrets-sync"
"""str: The human-readable application name (also the logger name)."""

DEFAULT_GROUP = ""
"""str: The name of the unnamed default group."""

DEFAULT_REMOTE_KEY = "default"
"""str: Remote key (and CLI alias) of the default group."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / APP_NAME
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "secrets.log"
"""Path: The file path for the CLI log."""

_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
_BASE_CONFIG = Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"

CONFIG_DIR: Path = _BASE_CONFIG / APP_NAME
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

REGISTRY_FILE: Path = CONFIG_DIR / "registry"
"""Path: The file mapping groups to their tracked paths."""

# --- Environment ---
ENV_URL = "SECRETS_URL"
ENV_TOKEN = "SECRETS_TOKEN"
ENV_PASSPHRASE = "SECRETS_PASSPHRASE"

# --- Crypto ---
MIN_KDF_ITERATIONS = 100_000
"""int: The lowest PBKDF2 iteration count accepted."""

DEFAULT_KDF_ITERATIONS = 600_000
"""int: PBKDF2-HMAC-SHA256 iterations used when the config is silent."""

SALT_SIZE = 16
IV_SIZE = 16
KEY_SIZE = 32
MAC_SIZE = 32

# --- Network ---
DEFAULT_TIMEOUT = 30
"""int: Seconds before any remote call is abandoned."""

SECRETS_ENDPOINT = "/secrets"
"""str: Path prefix of the remote key-value API."""

# --- Archive ---
TRACKED_PAX_KEY = "SECRETS_SYNC.tracked"
"""str: PAX header marking an archive member as a registry root."""

# --- Shell rc ---
RC_BLOCK_START = "# secrets-sync-start"
RC_BLOCK_END = "# secrets-sync-end"
