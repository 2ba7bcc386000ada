"""Maintenance of the delimited environment block in a shell rc file."""

import contextlib
import logging
import os
import shlex
from pathlib import Path

from .constants import (
    APP_NAME,
    ENV_PASSPHRASE,
    ENV_TOKEN,
    ENV_URL,
    RC_BLOCK_END,
    RC_BLOCK_START,
)
from .errors import ConfigError

logger = logging.getLogger(APP_NAME)


def default_rc_file() -> Path:
    """Picks the rc file for the user's login shell (zsh unless bash is in use)."""
    shell = os.environ.get("SHELL", "")
    name = ".bashrc" if shell.endswith("bash") else ".zshrc"
    return Path.home() / name


def export_lines(url: str, token: str, passphrase: str) -> list[str]:
    """Builds the shell-quoted export statements for the managed block."""
    values = [(ENV_URL, url), (ENV_TOKEN, token), (ENV_PASSPHRASE, passphrase)]
    return [f"export {key}={shlex.quote(value)}" for key, value in values if value]


def _split(text: str) -> tuple[list[str], list[str] | None, list[str]]:
    """Splits rc content into (before, block body, after). Body is None if absent."""
    lines = text.splitlines()
    try:
        start = lines.index(RC_BLOCK_START)
        end = lines.index(RC_BLOCK_END, start + 1)
    except ValueError:
        return lines, None, []
    return lines[:start], lines[start + 1 : end], lines[end + 1 :]


def read_managed_block(rc_file: Path) -> list[str] | None:
    """Returns the lines inside the managed block, or None if there is none."""
    if not rc_file.exists():
        return None
    _, body, _ = _split(rc_file.read_text())
    return body


def write_managed_block(rc_file: Path, body: list[str]) -> None:
    """Replaces the managed block as a whole, appending it when absent.

    The file is rewritten atomically and keeps its original permissions.

    Args:
        rc_file (Path): The shell rc file.
        body (list[str]): Lines to place between the markers.

    Raises:
        ConfigError: If the rc file cannot be read or written.
    """
    try:
        text = rc_file.read_text() if rc_file.exists() else ""
    except OSError as e:
        raise ConfigError(f"Cannot update {rc_file}: {e.strerror or e}") from e
    before, existing, after = _split(text)
    block = [RC_BLOCK_START, *body, RC_BLOCK_END]

    if existing is None:
        if before and before[-1].strip():
            before.append("")
        new_lines = before + block
    else:
        new_lines = before + block + after

    tmp_file = rc_file.with_name(rc_file.name + ".tmp")
    try:
        with open(tmp_file, "w") as f:
            f.write("\n".join(new_lines) + "\n")
            f.flush()
            os.fsync(f.fileno())
        mode = rc_file.stat().st_mode & 0o777 if rc_file.exists() else 0o600
        os.chmod(tmp_file, mode)
        os.replace(tmp_file, rc_file)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp_file.unlink()
        raise ConfigError(f"Cannot update {rc_file}: {e.strerror or e}") from e
    logger.info(f"Updated managed block in {rc_file}")
