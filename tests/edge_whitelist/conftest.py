"""Shared fixtures for the edge_whitelist test suite."""

from __future__ import annotations

import logging
import os
import threading
from typing import Callable, Dict, List, Mapping, Optional, Union

import pytest

from EdgeWhitelist import net
from EdgeWhitelist.cancellation import CancellationToken, check_cancelled
from EdgeWhitelist.errors import TransportError
from EdgeWhitelist.logging_config import LOGGER_NAME
from EdgeWhitelist.settings import reset_settings

Canned = Union[bytes, str, BaseException, Callable[[Optional[CancellationToken]], bytes]]


class RecordingFetcher:
    """Fetcher double serving canned payloads keyed by URL and recording every call."""

    def __init__(self, responses: Mapping[str, Canned]) -> None:
        self.responses: Dict[str, Canned] = dict(responses)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, url: str, *, cancellation_token: Optional[CancellationToken] = None) -> bytes:
        with self._lock:
            self.calls.append(url)
        check_cancelled(cancellation_token)
        if url not in self.responses:
            raise TransportError(f"no canned response for {url}", url=url)
        value = self.responses[url]
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(cancellation_token)
        if isinstance(value, str):
            return value.encode("utf-8")
        return value


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch: pytest.MonkeyPatch):
    """Clear environment overrides, cached settings, the shared client, and CLI log handlers."""

    for key in list(os.environ):
        if key.startswith("EDGE_WHITELIST_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    net.reset_http_client()
    yield
    net.reset_http_client()
    reset_settings()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_edge_whitelist_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_fetcher() -> Callable[[Mapping[str, Canned]], RecordingFetcher]:
    return RecordingFetcher
