"""Shared fixtures: an isolated config and an in-memory remote backend."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from secrets_sync.config import Config
from secrets_sync.constants import APP_NAME, MIN_KDF_ITERATIONS
from secrets_sync.remote import RemoteStore

TOKEN = "test-token"
URL = "https://secrets.test"


class FakeBackend:
    """Implements the /secrets API for httpx.MockTransport.

    Attributes:
        blobs (dict): Stored JSON payloads by group.
        unreachable (set[str]): Groups whose requests raise a connect error.
    """

    def __init__(self, token: str = TOKEN):
        self.token = token
        self.blobs: dict[str, Any] = {}
        self.unreachable: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "unauthorized"})

        path = request.url.path
        if path == "/secrets":
            return httpx.Response(200, json=sorted(self.blobs))

        group = path.removeprefix("/secrets/")
        if group in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "PUT":
            self.blobs[group] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})
        if request.method == "GET":
            if group not in self.blobs:
                return httpx.Response(404)
            return httpx.Response(200, json=self.blobs[group])
        if request.method == "DELETE":
            if self.blobs.pop(group, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A fake home directory that `~` expands to."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    return home_dir


@pytest.fixture
def config(tmp_path: Path, home: Path) -> Config:
    """A fully populated configuration confined to tmp_path."""
    conf = Config()
    conf.remote.url = URL
    conf.remote.token = TOKEN
    conf.crypto.passphrase = "correct horse battery staple"
    conf.crypto.iterations = MIN_KDF_ITERATIONS
    conf.paths.registry = tmp_path / "config" / "registry"
    conf.paths.restore_root = home
    return conf


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def remote(backend: FakeBackend, mocker: Any) -> FakeBackend:
    """Routes every store opened by `ops` to the fake backend."""

    def _open_store(conf: Config) -> RemoteStore:
        conf.require_remote()
        return RemoteStore(
            conf.remote.url, conf.remote.token, transport=httpx.MockTransport(backend)
        )

    mocker.patch("secrets_sync.ops.open_store", side_effect=_open_store)
    return backend


@pytest.fixture(autouse=True)
def isolated_log_file(tmp_path: Path, mocker: Any) -> Iterator[Path]:
    """Keeps CLI logging out of the real state directory."""
    log_file = tmp_path / "state" / "secrets.log"
    mocker.patch("secrets_sync.cli.LOG_FILE", log_file)
    yield log_file

    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
