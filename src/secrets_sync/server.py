"""Reference backing store: a tiny authenticated key-value HTTP service.

Serves the ``/secrets`` API the client expects, storing each group's blob as
``<quoted-group>.json`` in a data directory. Meant for self-hosting on a
trusted network or for local testing; run it behind TLS for anything else.
"""

import contextlib
import hmac
import json
import logging
import os
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import quote, unquote

from .constants import APP_NAME, SECRETS_ENDPOINT
from .remote import blob_from_json, blob_to_json

logger = logging.getLogger(APP_NAME)


class SecretsStore:
    """File-backed blob storage, one JSON document per group."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _file(self, group: str) -> Path:
        return self.data_dir / f"{quote(group, safe='')}.json"

    def put(self, group: str, payload: dict[str, str]) -> None:
        target = self._file(group)
        tmp_file = target.with_suffix(".tmp")
        try:
            with open(tmp_file, "w") as f:
                json.dump(payload, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_file, target)
        except OSError:
            with contextlib.suppress(OSError):
                tmp_file.unlink()
            raise

    def get(self, group: str) -> dict[str, str] | None:
        target = self._file(group)
        if not target.exists():
            return None
        return json.loads(target.read_text())

    def delete(self, group: str) -> bool:
        target = self._file(group)
        if not target.exists():
            return False
        target.unlink()
        return True

    def groups(self) -> list[str]:
        return sorted(unquote(p.stem) for p in self.data_dir.glob("*.json"))


class SecretsHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the secrets API."""

    store: SecretsStore
    token: str

    def log_message(self, format: str, *args: object) -> None:
        logger.debug(f"{self.address_string()} {format % args}")

    def _send_json(self, status: int, payload: object) -> None:
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _authorized(self) -> bool:
        header = self.headers.get("Authorization", "")
        scheme, _, supplied = header.partition(" ")
        if scheme != "Bearer" or not self.token:
            return False
        return hmac.compare_digest(supplied.encode(), self.token.encode())

    def _route(self) -> tuple[bool, str | None]:
        """Returns (is_secrets_path, group). Group is None for the listing."""
        path = self.path.split("?", 1)[0]
        if path.rstrip("/") == SECRETS_ENDPOINT:
            return True, None
        prefix = SECRETS_ENDPOINT + "/"
        if path.startswith(prefix) and len(path) > len(prefix):
            return True, unquote(path[len(prefix) :])
        return False, None

    def _guard(self) -> tuple[bool, str | None]:
        matched, group = self._route()
        if not matched:
            self._send_json(404, {"error": "not found"})
            return False, None
        if not self._authorized():
            self._send_json(401, {"error": "unauthorized"})
            return False, None
        return True, group

    def do_GET(self) -> None:
        """List groups or fetch one blob."""
        ok, group = self._guard()
        if not ok:
            return
        if group is None:
            self._send_json(200, self.store.groups())
            return
        payload = self.store.get(group)
        if payload is None:
            self._send_json(404, {"error": "not found"})
        else:
            self._send_json(200, payload)

    def do_PUT(self) -> None:
        """Store a blob, replacing any previous one."""
        ok, group = self._guard()
        if not ok:
            return
        if group is None:
            self._send_json(405, {"error": "method not allowed"})
            return
        try:
            length = int(self.headers.get("Content-Length", "0"))
            payload = json.loads(self.rfile.read(length))
            # Round-trip through the codec to reject malformed blobs.
            normalized = blob_to_json(blob_from_json(payload))
        except ValueError as e:
            self._send_json(400, {"error": str(e)})
            return
        self.store.put(group, normalized)
        logger.info(f"Stored group '{group}'")
        self._send_json(200, {"ok": True})

    def do_DELETE(self) -> None:
        """Remove a blob."""
        ok, group = self._guard()
        if not ok:
            return
        if group is None:
            self._send_json(405, {"error": "method not allowed"})
            return
        if self.store.delete(group):
            logger.info(f"Deleted group '{group}'")
            self._send_json(200, {"ok": True})
        else:
            self._send_json(404, {"error": "not found"})


def create_server(
    data_dir: Path, token: str, host: str = "127.0.0.1", port: int = 8787
) -> ThreadingHTTPServer:
    """Builds (but does not start) a server bound to `host:port`."""
    handler = type(
        "BoundSecretsHandler",
        (SecretsHandler,),
        {"store": SecretsStore(data_dir), "token": token},
    )
    server = ThreadingHTTPServer((host, port), handler)
    logger.info(f"Secrets store serving {data_dir} at http://{host}:{server.server_port}")
    return server
