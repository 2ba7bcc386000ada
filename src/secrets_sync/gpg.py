import logging
import subprocess
from enum import Enum
from pathlib import Path

from .constants import APP_NAME
from .errors import GpgError

logger = logging.getLogger(APP_NAME)


class TrustLevel(Enum):
    """Owner trust levels, valued as gpg's ownertrust codes."""

    UNDEFINED = 2
    NEVER = 3
    MARGINAL = 4
    FULL = 5
    ULTIMATE = 6

    @classmethod
    def from_name(cls, name: str) -> "TrustLevel":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            choices = ", ".join(level.name.lower() for level in cls)
            raise ValueError(f"Unknown trust level '{name}' (choose from {choices})") from None


class Gpg:
    """A thin wrapper around the `gpg` command-line tool.

    All calls run non-interactively (`--batch`), so trust is set through
    `--import-ownertrust` rather than by driving the `--edit-key` menu.

    Attributes:
        binary (str): The gpg executable to invoke.
        homedir (Path | None): Optional alternative keyring directory.
    """

    def __init__(self, binary: str = "gpg", homedir: Path | None = None):
        self.binary = binary
        self.homedir = homedir

    def _run(self, args: list[str], input_text: str | None = None) -> str:
        """Executes gpg and returns its stdout.

        Raises:
            GpgError: If gpg is missing or exits non-zero.
        """
        cmd = [self.binary, "--batch", "--yes"]
        if self.homedir:
            cmd.extend(["--homedir", str(self.homedir)])
        cmd.extend(args)
        try:
            res = subprocess.run(
                cmd, input=input_text, capture_output=True, text=True, check=True
            )
        except FileNotFoundError as e:
            raise GpgError(f"'{self.binary}' is not installed") from e
        except subprocess.CalledProcessError as e:
            raise GpgError(f"gpg error: {(e.stderr or '').strip() or e}") from e
        return res.stdout

    def has_key(self, key_id: str) -> bool:
        """Returns True if the keyring holds a public key matching `key_id`."""
        try:
            self._run(["--list-keys", key_id])
            return True
        except GpgError as e:
            logger.debug(f"Key {key_id} not present: {e}")
            return False

    def import_key(self, path: Path) -> None:
        """Imports a key file (public or secret) into the keyring."""
        if not path.exists():
            raise GpgError(f"Key file not found: {path}")
        self._run(["--import", str(path)])
        logger.info(f"Imported GPG key from {path}")

    def fingerprint(self, key_id: str) -> str:
        """Resolves a key ID to its primary key's full fingerprint."""
        out = self._run(["--with-colons", "--fingerprint", key_id])
        for line in out.splitlines():
            fields = line.split(":")
            if fields[0] == "fpr" and len(fields) > 9 and fields[9]:
                return fields[9]
        raise GpgError(f"No fingerprint found for key {key_id}")

    def set_owner_trust(self, key_id: str, level: TrustLevel) -> None:
        """Sets the owner trust of `key_id` to `level`."""
        fpr = self.fingerprint(key_id)
        self._run(["--import-ownertrust"], input_text=f"{fpr}:{level.value}:\n")
        logger.info(f"Set trust for {key_id} to {level.name.lower()}")
