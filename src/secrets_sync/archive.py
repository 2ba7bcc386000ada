"""Packing tracked paths into a single deterministic tar stream and back."""

import io
import logging
import os
import stat
import tarfile
from pathlib import Path, PurePosixPath

from .constants import APP_NAME, TRACKED_PAX_KEY
from .errors import ArchiveError, CorruptArchive, NotFound

logger = logging.getLogger(APP_NAME)


def archive_name(path: Path, root: Path) -> str:
    """Returns the member name for a tracked path, relative to `root`.

    Paths outside `root` are stored under their anchor-stripped absolute path
    (``/etc/hosts`` becomes ``etc/hosts``).
    """
    try:
        rel = path.relative_to(root)
    except ValueError:
        logger.warning(f"{path} is outside {root}; it will restore under the restore root")
        rel = path.relative_to(path.anchor)
    return PurePosixPath(*rel.parts).as_posix()


def _normalized_info(name: str, st: os.stat_result, is_dir: bool) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE if is_dir else tarfile.REGTYPE
    info.mode = st.st_mode & 0o7777
    info.mtime = int(st.st_mtime)
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _collect(
    path: Path, name: str, ancestors: frozenset[tuple[int, int]] = frozenset()
) -> list[tuple[str, Path, os.stat_result]]:
    """Lists (member name, source, stat) triples under a tracked path, sorted.

    Sockets, FIFOs and devices are skipped, as are symlinks leading back to a
    directory already being walked.

    Raises:
        ArchiveError: If an entry cannot be inspected (e.g. a broken symlink).
    """
    try:
        st = path.stat()
    except OSError as e:
        raise ArchiveError(f"Cannot read {path}: {e.strerror or e}") from e

    if stat.S_ISREG(st.st_mode):
        return [(name, path, st)]
    if not stat.S_ISDIR(st.st_mode):
        logger.warning(f"Skipping {path}: not a regular file or directory")
        return []

    key = (st.st_dev, st.st_ino)
    if key in ancestors:
        logger.warning(f"Skipping {path}: symlink loop")
        return []

    try:
        children = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ArchiveError(f"Cannot list {path}: {e.strerror or e}") from e

    entries = [(name, path, st)]
    for child in children:
        entries.extend(_collect(child, f"{name}/{child.name}", ancestors | {key}))
    return entries


def pack(paths: set[Path] | list[Path], root: Path) -> bytes:
    """Serializes tracked files and directories into one tar stream.

    Members are sorted by name and carry normalized ownership, so packing
    unchanged input twice yields identical bytes. Symlinks are followed.

    Args:
        paths (set[Path] | list[Path]): Tracked absolute paths.
        root (Path): Directory the member names are made relative to.

    Returns:
        bytes: The uncompressed PAX-format tar stream.

    Raises:
        NotFound: If a tracked path no longer exists.
        ArchiveError: If two tracked paths share a member name or a file
            cannot be read.
    """
    tracked: dict[str, Path] = {}
    for path in paths:
        if not path.exists():
            raise NotFound(f"Tracked path is missing: {path}")
        name = archive_name(path, root)
        if name in tracked and tracked[name] != path:
            raise ArchiveError(f"{tracked[name]} and {path} both map to '{name}'")
        tracked[name] = path

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        seen: set[str] = set()
        for top in sorted(tracked):
            for name, source, st in _collect(tracked[top], top):
                if name in seen:
                    continue
                seen.add(name)
                is_dir = stat.S_ISDIR(st.st_mode)
                info = _normalized_info(name, st, is_dir)
                if name in tracked:
                    info.pax_headers = {TRACKED_PAX_KEY: "1"}
                if is_dir:
                    tar.addfile(info)
                    continue
                info.size = st.st_size
                try:
                    with open(source, "rb") as f:
                        tar.addfile(info, f)
                except OSError as e:
                    raise ArchiveError(f"Cannot read {source}: {e.strerror or e}") from e

    data = buf.getvalue()
    logger.debug(f"Packed {len(seen)} entries ({len(data)} bytes)")
    return data


def _clear_target(target: Path) -> None:
    """Removes a non-directory in the way of a member so it can be replaced.

    Read-only files are replaced rather than opened for writing.
    """
    if target.is_symlink() or (target.exists() and not target.is_dir()):
        target.unlink()


def unpack(data: bytes, destination_root: Path) -> list[Path]:
    """Recreates packed files under `destination_root`.

    Existing files at the destination are overwritten, including read-only
    ones.

    Args:
        data (bytes): A stream produced by `pack`.
        destination_root (Path): Where to recreate the structure.

    Returns:
        list[Path]: The restored paths that were tracked roots when packed.

    Raises:
        CorruptArchive: If the stream is malformed, contains anything other
            than regular files and directories, or escapes the destination.
        ArchiveError: If the destination cannot be written (e.g. a directory
            sits where a file is restored).
    """
    try:
        destination_root.mkdir(parents=True, exist_ok=True)
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            members = tar.getmembers()
            for member in members:
                if not (member.isfile() or member.isdir()):
                    raise CorruptArchive(f"Unsupported archive member: {member.name}")
                parts = PurePosixPath(member.name).parts
                if member.name.startswith("/") or ".." in parts:
                    raise CorruptArchive(f"Unsafe archive member: {member.name}")

            for member in members:
                _clear_target(destination_root / member.name)
                tar.extract(member, destination_root, filter="data")

            # The data filter drops directory modes; restore them without
            # group/other write bits.
            for member in members:
                if member.isdir():
                    (destination_root / member.name).chmod(member.mode & 0o755)
    except tarfile.TarError as e:
        raise CorruptArchive(f"Malformed archive: {e}") from e
    except OSError as e:
        raise ArchiveError(f"Cannot restore into {destination_root}: {e}") from e

    restored = [
        destination_root / m.name
        for m in members
        if m.pax_headers.get(TRACKED_PAX_KEY) == "1"
    ]
    logger.debug(f"Unpacked {len(members)} entries into {destination_root}")
    return restored
