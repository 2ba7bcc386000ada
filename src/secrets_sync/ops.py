import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from . import archive, crypto
from .config import Config
from .constants import APP_NAME, DEFAULT_GROUP, DEFAULT_REMOTE_KEY
from .errors import ArchiveError, ConfigError, NotFound, SecretsError
from .registry import Registry
from .remote import RemoteStore

logger = logging.getLogger(APP_NAME)


class Stage(Enum):
    """Pipeline stages a single group passes through during one command."""

    IDLE = "idle"
    VALIDATING = "validating"
    PACKING = "packing"
    FETCHING = "fetching"
    CRYPTING = "crypting"
    UPLOADING = "uploading"
    UNPACKING = "unpacking"
    DONE = "done"
    FAILED = "failed"


class StageError(SecretsError):
    """Wraps a failure with the pipeline stage it happened in.

    Attributes:
        stage (Stage): Where the pipeline stopped.
        cause (SecretsError): The underlying error.
    """

    def __init__(self, stage: Stage, cause: SecretsError):
        super().__init__(f"{cause} (while {stage.value})")
        self.stage = stage
        self.cause = cause


@dataclass
class SyncReport:
    """Outcome of a multi-group push or pull.

    Attributes:
        succeeded (list[str]): Groups that completed.
        failed (dict[str, str]): Group name to error message.
    """

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def remote_key(group: str) -> str:
    """Maps a local group name to its remote key (the default group is 'default')."""
    return group or DEFAULT_REMOTE_KEY


def local_group(name: str) -> str:
    """Maps a remote key or CLI argument back to a local group name."""
    return DEFAULT_GROUP if name == DEFAULT_REMOTE_KEY else name


def display_name(group: str) -> str:
    return group or f"({DEFAULT_REMOTE_KEY})"


def open_registry(config: Config) -> Registry:
    return Registry(config.paths.registry)


def open_store(config: Config) -> RemoteStore:
    """Creates a remote client from configuration.

    Raises:
        ConfigError: If no remote URL is configured.
    """
    config.require_remote()
    return RemoteStore(config.remote.url, config.remote.token, config.remote.timeout)


def _as_secrets_error(error: Exception) -> SecretsError:
    if isinstance(error, SecretsError):
        return error
    return ArchiveError(str(error))


def _require_passphrase(config: Config) -> str:
    if not config.crypto.passphrase:
        raise ConfigError("No passphrase available. Set SECRETS_PASSPHRASE.")
    return config.crypto.passphrase


def add_path(config: Config, path: str | Path, group: str = DEFAULT_GROUP) -> Path:
    """Tracks `path` in `group`, returning the normalized path."""
    return open_registry(config).add(path, local_group(group))


def push_group(
    config: Config, registry: Registry, store: RemoteStore, group: str
) -> None:
    """Packs, encrypts and uploads a single group.

    Raises:
        StageError: Wrapping the failure and the stage it occurred in.
    """
    stage = Stage.VALIDATING
    try:
        passphrase = _require_passphrase(config)
        paths = registry.list_paths(group)
        if not paths:
            raise NotFound(f"Group '{display_name(group)}' tracks no paths")

        stage = Stage.PACKING
        data = archive.pack(paths, config.paths.restore_root)

        stage = Stage.CRYPTING
        blob = crypto.encrypt(data, passphrase, config.crypto.iterations)

        stage = Stage.UPLOADING
        store.put(remote_key(group), blob)
    except (SecretsError, OSError) as e:
        cause = _as_secrets_error(e)
        logger.error(f"Push of '{display_name(group)}' failed while {stage.value}: {cause}")
        raise StageError(stage, cause) from e

    logger.info(f"Pushed '{display_name(group)}' ({len(paths)} paths, {len(data)} bytes)")


def pull_group(
    config: Config, registry: Registry, store: RemoteStore, group: str
) -> list[Path]:
    """Downloads, decrypts and unpacks a single group, then records its paths.

    Returns:
        list[Path]: The tracked paths that were restored.

    Raises:
        StageError: Wrapping the failure and the stage it occurred in.
    """
    stage = Stage.VALIDATING
    try:
        passphrase = _require_passphrase(config)

        stage = Stage.FETCHING
        blob = store.get(remote_key(group))

        stage = Stage.CRYPTING
        data = crypto.decrypt(blob, passphrase, config.crypto.iterations)

        stage = Stage.UNPACKING
        restored = archive.unpack(data, config.paths.restore_root)
        registry.record(restored, group)
    except (SecretsError, OSError) as e:
        cause = _as_secrets_error(e)
        logger.error(f"Pull of '{display_name(group)}' failed while {stage.value}: {cause}")
        raise StageError(stage, cause) from e

    logger.info(f"Pulled '{display_name(group)}' ({len(restored)} paths)")
    return restored


def push(config: Config, group: str | None = None) -> SyncReport:
    """Pushes one group, or every local group when `group` is None.

    Failures are isolated per group and collected in the report.
    """
    registry = open_registry(config)
    targets = [local_group(group)] if group is not None else sorted(registry.list_groups())
    report = SyncReport()

    with open_store(config) as store:
        for name in targets:
            try:
                push_group(config, registry, store, name)
                report.succeeded.append(name)
            except StageError as e:
                report.failed[name] = str(e)

    return report


def pull(config: Config, group: str | None = None) -> SyncReport:
    """Pulls one group, or the union of local and remote groups when None."""
    registry = open_registry(config)
    report = SyncReport()

    with open_store(config) as store:
        if group is not None:
            targets = [local_group(group)]
        else:
            names = set(registry.list_groups())
            try:
                names |= {local_group(key) for key in store.list()}
            except SecretsError as e:
                logger.warning(f"Could not list remote groups: {e}")
                if not names:
                    raise
            targets = sorted(names)

        for name in targets:
            try:
                pull_group(config, registry, store, name)
                report.succeeded.append(name)
            except StageError as e:
                report.failed[name] = str(e)

    return report


def remote_groups(config: Config) -> set[str]:
    """Returns the local names of the groups stored remotely."""
    with open_store(config) as store:
        return {local_group(key) for key in store.list()}


def group_status(
    local: dict[str, set[Path]], remote: set[str] | None
) -> dict[str, str]:
    """Classifies every known group as 'both', 'local only' or 'remote only'.

    When `remote` is None (remote unreachable) local groups are 'unknown'.
    """
    status: dict[str, str] = {}
    for name in local:
        if remote is None:
            status[name] = "unknown"
        else:
            status[name] = "both" if name in remote else "local only"
    for name in remote or set():
        status.setdefault(name, "remote only")
    return status


def delete_group(config: Config, group: str) -> list[str]:
    """Removes a group remotely and locally, attempting both halves.

    Returns:
        list[str]: Error messages for the halves that failed (empty on success).
    """
    name = local_group(group)
    errors: list[str] = []

    try:
        with open_store(config) as store:
            store.delete(remote_key(name))
    except SecretsError as e:
        logger.error(f"Remote delete of '{display_name(name)}' failed: {e}")
        errors.append(f"remote: {e}")

    try:
        open_registry(config).remove_group(name)
    except SecretsError as e:
        logger.error(f"Local delete of '{display_name(name)}' failed: {e}")
        errors.append(f"local: {e}")

    return errors
