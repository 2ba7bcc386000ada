"""Local record of which paths belong to which secrets group.

The registry is a plain text file of ``group<TAB>path`` lines, sorted so that
it diffs cleanly and can be edited by hand. The default group is written with
an empty name (the line starts with a tab).
"""

import contextlib
import fcntl
import logging
import os
from collections.abc import Iterator
from pathlib import Path

from .constants import APP_NAME, DEFAULT_GROUP
from .errors import NotFound, RegistryError

logger = logging.getLogger(APP_NAME)


def normalize_path(path: str | Path) -> Path:
    """Expands `~` and resolves a path to its absolute form."""
    return Path(os.path.abspath(Path(path).expanduser()))


class Registry:
    """An in-memory view of the registry file with atomic persistence.

    Attributes:
        path (Path): The registry file location.
    """

    def __init__(self, path: Path):
        self.path = path
        self._groups: dict[str, set[Path]] = {}
        self._load()

    def _load(self) -> None:
        """Reads the registry, treating a missing or unreadable file as empty."""
        if not self.path.exists():
            return

        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Registry at {self.path} unreadable, starting empty: {e}")
            return

        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.rstrip("\r")
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            group, sep, path_str = line.partition("\t")
            if not sep or not path_str.strip():
                logger.warning(f"Skipping malformed registry line {lineno}: {raw!r}")
                continue
            self._groups.setdefault(group, set()).add(Path(path_str))

    def save(self) -> None:
        """Persists the registry atomically under an exclusive lock.

        Raises:
            RegistryError: If the file cannot be written.
        """
        lines = [
            f"{group}\t{path}"
            for group in sorted(self._groups)
            for path in sorted(self._groups[group])
        ]
        content = "\n".join(lines) + "\n" if lines else ""
        tmp_file = self.path.with_name(self.path.name + ".tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._locked():
                with open(tmp_file, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_file, self.path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_file.unlink()
            raise RegistryError(f"Cannot write registry {self.path}: {e}") from e

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        lock_path = self.path.with_name(self.path.name + ".lock")
        with open(lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

    def add(self, path: str | Path, group: str = DEFAULT_GROUP) -> Path:
        """Tracks a path under a group, moving it out of any previous group.

        Args:
            path (str | Path): The file or directory to track.
            group (str): Target group name. Defaults to the unnamed group.

        Returns:
            Path: The normalized path that was recorded.

        Raises:
            NotFound: If the path does not exist.
            RegistryError: If the registry cannot be saved.
        """
        if "\t" in group or "\n" in group:
            raise RegistryError(f"Invalid group name: {group!r}")

        normalized = normalize_path(path)
        if not normalized.exists():
            raise NotFound(f"Path does not exist: {normalized}")

        if normalized in self._groups.get(group, set()):
            logger.debug(f"{normalized} already tracked in group '{group}'")
            return normalized

        self._record(normalized, group)
        self.save()
        logger.info(f"Tracked {normalized} in group '{group}'")
        return normalized

    def record(self, paths: list[Path], group: str) -> None:
        """Tracks already-restored paths without existence checks, then saves."""
        changed = False
        for path in paths:
            normalized = normalize_path(path)
            if normalized not in self._groups.get(group, set()):
                self._record(normalized, group)
                changed = True
        if changed:
            self.save()

    def _record(self, path: Path, group: str) -> None:
        previous = self.group_of(path)
        if previous is not None and previous != group:
            logger.info(f"Moving {path} from group '{previous}' to '{group}'")
            self._groups[previous].discard(path)
            if not self._groups[previous]:
                del self._groups[previous]
        self._groups.setdefault(group, set()).add(path)

    def remove_group(self, group: str) -> bool:
        """Forgets a group locally. Returns False when it was not known."""
        if group not in self._groups:
            return False
        del self._groups[group]
        self.save()
        logger.info(f"Removed group '{group}' from registry")
        return True

    def list_groups(self) -> set[str]:
        """Returns the names of all groups tracking at least one path."""
        return {name for name, paths in self._groups.items() if paths}

    def list_paths(self, group: str) -> set[Path]:
        """Returns a copy of the paths tracked by a group (empty if unknown)."""
        return set(self._groups.get(group, set()))

    def group_of(self, path: str | Path) -> str | None:
        """Returns the group that currently tracks `path`, if any."""
        normalized = normalize_path(path)
        for name, paths in self._groups.items():
            if normalized in paths:
                return name
        return None
