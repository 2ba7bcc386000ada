"""HTTP client for the remote key-value store holding encrypted blobs."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any
from urllib.parse import quote

import httpx

from .constants import APP_NAME, DEFAULT_TIMEOUT, SECRETS_ENDPOINT
from .crypto import Blob
from .errors import AuthError, NotFound, RemoteUnavailable

logger = logging.getLogger(APP_NAME)


def blob_to_json(blob: Blob) -> dict[str, str]:
    """Encodes a blob as the `{ciphertext, salt, iv}` base64 JSON object."""
    return {
        "ciphertext": base64.b64encode(blob.ciphertext).decode("ascii"),
        "salt": base64.b64encode(blob.salt).decode("ascii"),
        "iv": base64.b64encode(blob.iv).decode("ascii"),
    }


def blob_from_json(data: Any) -> Blob:
    """Decodes a `{ciphertext, salt, iv}` object.

    Raises:
        ValueError: If a field is missing or not valid base64.
    """
    if not isinstance(data, dict):
        raise ValueError("Blob payload must be a JSON object")
    try:
        return Blob(
            ciphertext=base64.b64decode(data["ciphertext"], validate=True),
            salt=base64.b64decode(data["salt"], validate=True),
            iv=base64.b64decode(data["iv"], validate=True),
        )
    except (KeyError, TypeError, binascii.Error) as e:
        raise ValueError(f"Malformed blob payload: {e}") from e


class RemoteStore:
    """Client for the secrets key-value backend.

    Every request carries the bearer token and is bounded by `timeout`.
    """

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.Client(
            base_url=self.url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> RemoteStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @staticmethod
    def _group_path(group: str) -> str:
        return f"{SECRETS_ENDPOINT}/{quote(group, safe='')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Sends a request, mapping transport and status failures to our errors.

        404 responses are returned to the caller untouched.
        """
        try:
            resp = self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteUnavailable(f"Timed out talking to {self.url}") from e
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"Cannot reach {self.url}: {e}") from e

        logger.debug(f"{method} {path} -> {resp.status_code}")
        if resp.status_code in (401, 403):
            raise AuthError(f"Remote rejected credentials ({resp.status_code})")
        if resp.status_code == 404:
            return resp
        if resp.status_code >= 400:
            raise RemoteUnavailable(
                f"Remote returned {resp.status_code} for {method} {path}"
            )
        return resp

    def put(self, group: str, blob: Blob) -> None:
        """Stores `blob` under `group`, replacing any previous value."""
        resp = self._request("PUT", self._group_path(group), json=blob_to_json(blob))
        if resp.status_code == 404:
            raise RemoteUnavailable(f"Remote has no secrets endpoint at {self.url}")

    def get(self, group: str) -> Blob:
        """Fetches the blob stored under `group`.

        Raises:
            NotFound: If the remote holds nothing for the group.
        """
        resp = self._request("GET", self._group_path(group))
        if resp.status_code == 404:
            raise NotFound(f"No remote secrets for group '{group}'")
        try:
            return blob_from_json(resp.json())
        except ValueError as e:
            raise RemoteUnavailable(f"Malformed response for group '{group}': {e}") from e

    def delete(self, group: str) -> None:
        """Removes the blob for `group`. A missing blob is not an error."""
        resp = self._request("DELETE", self._group_path(group))
        if resp.status_code == 404:
            logger.debug(f"Remote group '{group}' already absent")

    def list(self) -> set[str]:
        """Returns the group names currently stored remotely."""
        resp = self._request("GET", SECRETS_ENDPOINT)
        if resp.status_code == 404:
            raise RemoteUnavailable(f"Remote has no secrets endpoint at {self.url}")
        try:
            names = resp.json()
        except ValueError as e:
            raise RemoteUnavailable(f"Malformed group listing: {e}") from e
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise RemoteUnavailable("Malformed group listing: expected a list of names")
        return set(names)
