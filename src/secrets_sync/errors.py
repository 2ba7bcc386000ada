"""Exception taxonomy shared by every secrets-sync component.

Each subcommand catches :class:`SecretsError` at its boundary and turns it
into a user-facing message and a non-zero exit code.
"""


class SecretsError(Exception):
    """Base class for all expected, user-reportable failures."""


class NotFound(SecretsError):
    """A local path or remote group does not exist."""


class AuthError(SecretsError):
    """The remote rejected the bearer token. Never retried."""


class RemoteUnavailable(SecretsError):
    """Network failure, timeout or server error. Safe to retry."""


class DecryptionError(SecretsError):
    """Wrong passphrase or corrupted ciphertext.

    Deliberately carries a single message regardless of which step failed.
    """

    def __init__(self, message: str = "Decryption failed: wrong passphrase or corrupted data"):
        super().__init__(message)


class CorruptArchive(SecretsError):
    """The decrypted archive stream is malformed or unsafe to extract."""


class RegistryError(SecretsError):
    """The local registry could not be written."""


class ConfigError(SecretsError):
    """Required configuration (URL, passphrase) is missing or invalid."""


class GpgError(SecretsError):
    """A gpg invocation failed."""


class ArchiveError(SecretsError):
    """A local file could not be read while packing or written while unpacking."""
