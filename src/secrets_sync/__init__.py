"""secrets-sync: client-side encrypted sync of local secret files.

This package provides the command-line interface, the local group registry,
the archive and crypto pipeline, and the client (plus a reference server) for
the remote key-value store that holds one encrypted blob per group.
"""

from . import (
    archive,
    cli,
    config,
    constants,
    crypto,
    errors,
    gpg,
    ops,
    registry,
    remote,
    server,
    shellrc,
)

__all__ = [
    "archive",
    "cli",
    "config",
    "constants",
    "crypto",
    "errors",
    "gpg",
    "ops",
    "registry",
    "remote",
    "server",
    "shellrc",
]
