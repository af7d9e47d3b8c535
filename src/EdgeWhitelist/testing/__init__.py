"""Testing utilities for exercising the whitelist engine end-to-end.

Provides a helper that installs a mock-transport HTTPX client as the shared
client, plus a loopback HTTP server that serves canned publisher payloads so
the real client, streaming, and header handling can be tested without
network access.
"""

from __future__ import annotations

import contextlib
import http.server
import json
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from urllib.parse import urljoin

import httpx

from ..net import configure_http_client, reset_http_client

__all__ = [
    "LoopbackServer",
    "RequestRecord",
    "ResponseSpec",
    "use_mock_http_client",
]


@contextlib.contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, **client_kwargs):
    """Temporarily install an HTTPX client backed by ``transport``."""

    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()


@dataclass
class ResponseSpec:
    """HTTP response definition served by the loopback test server."""

    status: int = 200
    body: Union[bytes, str, Mapping[str, object]] = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    stream: Optional[Iterable[Union[bytes, str]]] = None

    def serialise_body(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return json.dumps(self.body).encode("utf-8")


@dataclass
class RequestRecord:
    """Captured HTTP request received by the loopback server."""

    method: str
    path: str
    headers: Mapping[str, str]


class _PublisherHandler(http.server.BaseHTTPRequestHandler):
    """Serves the response queued on ``loopback`` for the requested path."""

    loopback: "LoopbackServer"

    def log_message(self, format, *args):
        return

    def do_GET(self):
        path = self.path.split("?", 1)[0]
        self.loopback._record(RequestRecord(self.command, path, dict(self.headers.items())))
        response = self.loopback._next_response(path)
        if response is None:
            self.send_error(404)
            return

        self.send_response(response.status)
        headers = dict(response.headers)
        if response.stream is None:
            # An explicit Content-Length is kept so short bodies can be served.
            headers.setdefault("Content-Length", str(len(response.serialise_body())))
        for key, value in headers.items():
            self.send_header(key, value)
        self.end_headers()
        chunks = response.stream if response.stream is not None else [response.serialise_body()]
        for chunk in chunks:
            self.wfile.write(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
            self.wfile.flush()


class LoopbackServer(contextlib.AbstractContextManager):
    """Threaded HTTP server on 127.0.0.1 serving queued responses per path.

    Queued responses are consumed in order; the last one for a path keeps
    being served so periodic refreshes see a stable payload.

    Examples:
        >>> with LoopbackServer() as server:  # doctest: +SKIP
        ...     server.queue_response("/ips-v4", ResponseSpec(body="192.0.2.0/24\\n"))
        ...     url = server.url("/ips-v4")
    """

    def __init__(self) -> None:
        self._responses: Dict[str, Deque[ResponseSpec]] = defaultdict(deque)
        self._requests: List[RequestRecord] = []
        self._lock = threading.Lock()
        self._server: Optional[http.server.ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._root: Optional[str] = None

    def __enter__(self) -> "LoopbackServer":
        handler = type("_BoundPublisherHandler", (_PublisherHandler,), {"loopback": self})
        server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), handler)
        host, port = server.server_address[:2]
        thread = threading.Thread(
            target=server.serve_forever, name="EdgeWhitelistLoopback", daemon=True
        )
        thread.start()
        self._server = server
        self._thread = thread
        self._root = f"http://{host}:{port}/"
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._responses.clear()
        self._root = None

    def url(self, path: str) -> str:
        """Return the absolute URL served for ``path``."""

        if not self._root:
            raise RuntimeError("LoopbackServer must be entered before requesting URLs")
        return urljoin(self._root, path.lstrip("/"))

    def queue_response(self, path: str, response: ResponseSpec) -> None:
        with self._lock:
            self._responses["/" + path.lstrip("/")].append(response)

    @property
    def requests(self) -> Sequence[RequestRecord]:
        with self._lock:
            return tuple(self._requests)

    def _record(self, record: RequestRecord) -> None:
        with self._lock:
            self._requests.append(record)

    def _next_response(self, path: str) -> Optional[ResponseSpec]:
        with self._lock:
            queued = self._responses.get(path)
            if not queued:
                return None
            if len(queued) > 1:
                return queued.popleft()
            return queued[0]
