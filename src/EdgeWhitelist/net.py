# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.net",
#   "purpose": "Shared HTTPX client and the correlation-tagged fetch used by every provider",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Client management API", "anchor": "API", "kind": "api"},
#     {"id": "fetch", "name": "fetch", "anchor": "function-fetch", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client and remote fetcher for publisher and resolver endpoints.

Every outbound request performed by the engine goes through :func:`fetch`:

- a fresh 32-hex-character correlation token is attached under the
  configured request-id header;
- the request is bounded by ``HttpSettings.timeout_sec`` (10 seconds by
  default);
- the body is streamed and read fully, checking the cancellation token
  between chunks so a stopping scheduler is not held up by a slow upstream;
- failures are classified as :class:`~EdgeWhitelist.errors.UpstreamStatusError`
  (non-2xx) or :class:`~EdgeWhitelist.errors.TransportError` (DNS, connect,
  timeout, truncated body).

Optional transport retries (``HttpSettings.connect_retries``) use Tenacity with
jittered exponential backoff; status errors are never retried.
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
import time
from typing import List, Optional, Protocol

import certifi
import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .cancellation import CancellationToken, check_cancelled
from .errors import TransportError, UpstreamStatusError
from .logging_config import generate_request_id
from .settings import HttpSettings, get_settings

LOGGER = logging.getLogger(__name__)

# --- Constants & globals -------------------------------------------------------

_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None


class Fetcher(Protocol):
    """Callable contract shared by :func:`fetch` and test doubles."""

    def __call__(
        self, url: str, *, cancellation_token: Optional[CancellationToken] = None
    ) -> bytes: ...


# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


def _request_hook(request: httpx.Request) -> None:
    LOGGER.debug(
        "whitelist-http-request",
        extra={
            "url": str(request.url),
            "request_id": request.extensions.get("whitelist_request_id"),
        },
    )


def _response_hook(response: httpx.Response) -> None:
    LOGGER.debug(
        "whitelist-http-response",
        extra={
            "url": str(response.request.url),
            "status": response.status_code,
            "request_id": response.request.extensions.get("whitelist_request_id"),
        },
    )


def _build_http_client(settings: HttpSettings) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(settings.timeout_sec),
        verify=_build_ssl_context(),
        trust_env=settings.trust_env,
        follow_redirects=settings.follow_redirects,
        headers={"User-Agent": settings.user_agent},
        event_hooks={"request": [_request_hook], "response": [_response_hook]},
    )


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(Exception):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Client management API -----------------------------------------------------


def configure_http_client(client: httpx.Client) -> None:
    """Install ``client`` as the shared HTTPX client (used by tests and embedders)."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not client:
            _close_client_unlocked()
        _HTTP_CLIENT = client


def reset_http_client() -> None:
    """Close the shared client so the next call rebuilds it from settings."""

    with _CLIENT_LOCK:
        _close_client_unlocked()


def get_http_client(settings: Optional[HttpSettings] = None) -> httpx.Client:
    """Return the shared HTTPX client, creating it if necessary."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is None:
            _HTTP_CLIENT = _build_http_client(settings or get_settings().http)
            LOGGER.debug("HTTPX client created")
        return _HTTP_CLIENT


# --- fetch ---------------------------------------------------------------------


def _fetch_once(
    url: str,
    *,
    client: httpx.Client,
    settings: HttpSettings,
    cancellation_token: Optional[CancellationToken],
) -> bytes:
    check_cancelled(cancellation_token)
    request_id = generate_request_id()
    try:
        with client.stream(
            "GET",
            url,
            headers={settings.request_id_header: request_id},
            timeout=settings.timeout_sec,
            extensions={"whitelist_request_id": request_id},
        ) as response:
            if not response.is_success:
                raise UpstreamStatusError(response.status_code, url)
            chunks: List[bytes] = []
            for chunk in response.iter_bytes():
                check_cancelled(cancellation_token)
                chunks.append(chunk)
    except httpx.TimeoutException as exc:
        raise TransportError(
            f"timed out after {settings.timeout_sec}s fetching {url}", url=url
        ) from exc
    except httpx.InvalidURL as exc:
        raise TransportError(f"invalid URL {url!r}: {exc}", url=url) from exc
    except httpx.HTTPError as exc:
        raise TransportError(f"request to {url} failed: {exc}", url=url) from exc
    return b"".join(chunks)


def fetch(
    url: str,
    *,
    cancellation_token: Optional[CancellationToken] = None,
    client: Optional[httpx.Client] = None,
    settings: Optional[HttpSettings] = None,
) -> bytes:
    """Perform a GET request against ``url`` and return the full response body.

    Args:
        url: Absolute URL of the publisher or resolver endpoint.
        cancellation_token: Token checked before the request and between body
            chunks; cancellation raises :class:`~EdgeWhitelist.errors.RefreshCancelled`.
        client: Explicit client; defaults to :func:`get_http_client`.
        settings: HTTP settings; defaults to the process settings.

    Returns:
        Raw response body bytes.

    Raises:
        UpstreamStatusError: When the response status is outside 2xx.
        TransportError: On DNS, connection, timeout, or truncated-body failures.
        RefreshCancelled: When the token is cancelled mid-flight.
    """

    http_settings = settings or get_settings().http
    http_client = client or get_http_client(http_settings)

    if http_settings.connect_retries == 0:
        return _fetch_once(
            url,
            client=http_client,
            settings=http_settings,
            cancellation_token=cancellation_token,
        )

    def _sleep(seconds: float) -> None:
        if cancellation_token is not None:
            cancellation_token.wait(seconds)
        else:
            time.sleep(seconds)

    retrying = Retrying(
        stop=stop_after_attempt(http_settings.connect_retries + 1),
        wait=wait_random_exponential(
            multiplier=http_settings.backoff_base, max=http_settings.backoff_max
        ),
        retry=retry_if_exception_type(TransportError),
        sleep=_sleep,
        before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        reraise=True,
    )
    return retrying(
        _fetch_once,
        url,
        client=http_client,
        settings=http_settings,
        cancellation_token=cancellation_token,
    )


__all__ = [
    "Fetcher",
    "configure_http_client",
    "fetch",
    "get_http_client",
    "reset_http_client",
]
