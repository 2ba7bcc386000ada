"""Tests for the remote store HTTP client."""

import base64
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from secrets_sync.crypto import Blob
from secrets_sync.errors import AuthError, NotFound, RemoteUnavailable
from secrets_sync.remote import RemoteStore, blob_from_json, blob_to_json

BLOB = Blob(ciphertext=b"\x00cipher", salt=b"salt", iv=b"iv" * 8)


def _store(
    handler: Callable[[httpx.Request], httpx.Response], token: str = "test-token"
) -> RemoteStore:
    return RemoteStore(
        "https://secrets.test/", token, timeout=5, transport=httpx.MockTransport(handler)
    )


def test_blob_json_round_trip() -> None:
    payload = blob_to_json(BLOB)
    assert payload["ciphertext"] == base64.b64encode(b"\x00cipher").decode()
    assert blob_from_json(payload) == BLOB


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"ciphertext": "AAAA", "salt": "AAAA"},
        {"ciphertext": "***", "salt": "AAAA", "iv": "AAAA"},
        {"ciphertext": 5, "salt": "AAAA", "iv": "AAAA"},
    ],
)
def test_blob_from_json_rejects_malformed(payload: object) -> None:
    with pytest.raises(ValueError):
        blob_from_json(payload)


def test_put_sends_bearer_and_json(backend: Any) -> None:
    """Verifies the PUT request shape and that the backend stores it."""
    with _store(backend) as store:
        store.put("ssh", BLOB)
        assert store.get("ssh") == BLOB
        assert store.list() == {"ssh"}


def test_group_names_are_quoted() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.raw_path.decode())
        return httpx.Response(200, json={"ok": True})

    _store(handler).put("work/ssh keys", BLOB)

    assert seen == ["/secrets/work%2Fssh%20keys"]


def test_get_missing_raises_not_found(backend: Any) -> None:
    with pytest.raises(NotFound):
        _store(backend).get("ghost")


def test_delete_missing_is_not_an_error(backend: Any) -> None:
    _store(backend).delete("ghost")


def test_delete_removes_blob(backend: Any) -> None:
    store = _store(backend)
    store.put("ssh", BLOB)
    store.delete("ssh")
    assert store.list() == set()


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failures(status: int) -> None:
    store = _store(lambda request: httpx.Response(status))
    with pytest.raises(AuthError):
        store.put("ssh", BLOB)


def test_bad_token_against_backend(backend: Any) -> None:
    with pytest.raises(AuthError):
        _store(backend, token="wrong").list()


def test_missing_token_sends_no_header() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "Authorization" not in request.headers
        return httpx.Response(401)

    with pytest.raises(AuthError):
        _store(handler, token="").list()


@pytest.mark.parametrize("status", [500, 502, 503, 400])
def test_server_errors_are_unavailable(status: int) -> None:
    store = _store(lambda request: httpx.Response(status))
    with pytest.raises(RemoteUnavailable, match=str(status)):
        store.get("ssh")


def test_connect_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RemoteUnavailable, match="Cannot reach"):
        _store(handler).put("ssh", BLOB)


def test_timeout_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(RemoteUnavailable, match="Timed out"):
        _store(handler).get("ssh")


def test_timeout_is_configured() -> None:
    store = _store(lambda request: httpx.Response(200, json=[]))
    assert store.client.timeout.read == 5


def test_malformed_get_response() -> None:
    store = _store(lambda request: httpx.Response(200, json={"nope": 1}))
    with pytest.raises(RemoteUnavailable, match="Malformed"):
        store.get("ssh")


@pytest.mark.parametrize("body", [b"not json", b'{"a": 1}', b"[1, 2]"])
def test_malformed_listing(body: bytes) -> None:
    store = _store(lambda request: httpx.Response(200, content=body))
    with pytest.raises(RemoteUnavailable, match="Malformed"):
        store.list()
