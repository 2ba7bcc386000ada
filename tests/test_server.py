"""End-to-end tests of the client against the reference backing store."""

import threading
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest

from secrets_sync import crypto
from secrets_sync.constants import MIN_KDF_ITERATIONS
from secrets_sync.errors import AuthError, NotFound, RemoteUnavailable
from secrets_sync.remote import RemoteStore
from secrets_sync.server import SecretsStore, create_server

TOKEN = "server-token"


@pytest.fixture
def base_url(tmp_path: Path) -> Iterator[str]:
    """Runs the reference server on an ephemeral port for one test."""
    httpd = create_server(tmp_path / "data", TOKEN, port=0)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{httpd.server_port}"
    finally:
        httpd.shutdown()
        httpd.server_close()
        thread.join(timeout=5)


def test_crud_round_trip(base_url: str) -> None:
    blob = crypto.encrypt(b"payload", "pw", MIN_KDF_ITERATIONS)

    with RemoteStore(base_url, TOKEN, timeout=5) as store:
        store.put("work/ssh", blob)
        assert store.list() == {"work/ssh"}
        fetched = store.get("work/ssh")
        assert crypto.decrypt(fetched, "pw", MIN_KDF_ITERATIONS) == b"payload"

        store.delete("work/ssh")
        store.delete("work/ssh")
        assert store.list() == set()
        with pytest.raises(NotFound):
            store.get("work/ssh")


def test_put_overwrites(base_url: str) -> None:
    first = crypto.Blob(b"a" * 48, b"s", b"i" * 16)
    second = crypto.Blob(b"b" * 48, b"s", b"i" * 16)
    with RemoteStore(base_url, TOKEN, timeout=5) as store:
        store.put("g", first)
        store.put("g", second)
        assert store.get("g") == second


def test_wrong_token_rejected(base_url: str) -> None:
    with RemoteStore(base_url, "nope", timeout=5) as store:
        with pytest.raises(AuthError):
            store.list()


def test_malformed_body_rejected(base_url: str) -> None:
    resp = httpx.put(
        f"{base_url}/secrets/g",
        content=b"{not json",
        headers={"Authorization": f"Bearer {TOKEN}"},
    )
    assert resp.status_code == 400


def test_unknown_path_is_404(base_url: str) -> None:
    resp = httpx.get(f"{base_url}/other", headers={"Authorization": f"Bearer {TOKEN}"})
    assert resp.status_code == 404


def test_unreachable_server() -> None:
    with RemoteStore("http://127.0.0.1:9", TOKEN, timeout=1) as store:
        with pytest.raises(RemoteUnavailable):
            store.list()


def test_store_file_names_are_quoted(tmp_path: Path) -> None:
    store = SecretsStore(tmp_path)
    store.put("a/b", {"ciphertext": "", "salt": "", "iv": ""})

    assert (tmp_path / "a%2Fb.json").exists()
    assert store.groups() == ["a/b"]
    assert store.delete("a/b") is True
    assert store.delete("a/b") is False
