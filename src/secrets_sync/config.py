import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_KDF_ITERATIONS,
    DEFAULT_TIMEOUT,
    ENV_PASSPHRASE,
    ENV_TOKEN,
    ENV_URL,
    MIN_KDF_ITERATIONS,
    REGISTRY_FILE,
)
from .errors import ConfigError

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '5MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '30s', '1m') to seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return num * multiplier[unit]


@dataclass
class RemoteConfig:
    """Remote key-value store settings.

    Attributes:
        url (str): Base URL of the backing store (e.g. https://secrets.example.dev).
        token (str): Bearer token sent with every request.
        timeout (float): Seconds before a remote call is abandoned.
    """

    url: str = ""
    token: str = field(default="", repr=False)
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class CryptoConfig:
    """Key derivation settings.

    Attributes:
        iterations (int): PBKDF2 iteration count (never below 100,000).
        passphrase (str): Only ever read from the environment or a prompt.
    """

    iterations: int = DEFAULT_KDF_ITERATIONS
    passphrase: str = field(default="", repr=False)


@dataclass
class PathsConfig:
    """Local file locations.

    Attributes:
        registry (Path): The group-to-path registry file.
        restore_root (Path): Root under which pulled archives are unpacked and
            relative to which pushed paths are named.
    """

    registry: Path = REGISTRY_FILE
    restore_root: Path = field(default_factory=Path.home)


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for the log file before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Built once at startup from defaults, the TOML file, and the environment,
    then passed explicitly to every operation.

    Attributes:
        remote (RemoteConfig): Backing store settings.
        crypto (CryptoConfig): Key derivation settings.
        paths (PathsConfig): Local file locations.
        limits (LimitsConfig): Resource limits.
    """

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    crypto: CryptoConfig = field(default_factory=CryptoConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(
        cls, path: Path | None = None, environ: dict[str, str] | None = None
    ) -> "Config":
        """Loads and merges configuration from defaults, file, and environment.

        Args:
            path (Path | None): Config file to read. Defaults to CONFIG_FILE.
            environ (dict[str, str] | None): Environment mapping. Defaults to
                os.environ.

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()
        config_path = path if path is not None else CONFIG_FILE
        if config_path.exists():
            instance._merge_from_file(config_path)

        instance._merge_from_env(os.environ if environ is None else environ)
        return instance

    def require_remote(self) -> None:
        """Raises ConfigError unless a remote URL is configured."""
        if not self.remote.url:
            raise ConfigError(
                f"No remote configured. Set {ENV_URL} or run 'secrets configure'."
            )

    def _merge_from_env(self, environ: Any) -> None:
        if url := environ.get(ENV_URL):
            self.remote.url = url
        if token := environ.get(ENV_TOKEN):
            self.remote.token = token
        if passphrase := environ.get(ENV_PASSPHRASE):
            self.crypto.passphrase = passphrase

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            if "remote" in data:
                self.remote = self._update_dataclass("remote", self.remote, data["remote"])
            if "crypto" in data:
                # The passphrase is never read from disk.
                crypto = dict(data["crypto"])
                if crypto.pop("passphrase", None) is not None:
                    logger.warning(
                        f"Ignoring [crypto].passphrase in {path}; use {ENV_PASSPHRASE}."
                    )
                self.crypto = self._update_dataclass("crypto", self.crypto, crypto)
            if "paths" in data:
                self.paths = self._update_dataclass("paths", self.paths, data["paths"])
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )

            unknown = set(data) - {"remote", "crypto", "paths", "limits"}
            if unknown:
                logger.warning(
                    f"Unknown config sections in {path}: {', '.join(sorted(unknown))}. Ignoring."
                )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "timeout":
                    filtered_updates[k] = parse_time(v)
                elif k == "iterations":
                    filtered_updates[k] = _parse_iterations(v)
                elif k in ("registry", "restore_root"):
                    filtered_updates[k] = Path(str(v)).expanduser()
                elif k in ("url", "token") and not isinstance(v, str):
                    raise ValueError(f"Expected a string, got {type(v).__name__}")
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)


def _parse_iterations(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Invalid iteration count '{value}'")
    if value < MIN_KDF_ITERATIONS:
        raise ValueError(f"Iteration count must be at least {MIN_KDF_ITERATIONS}")
    return value
