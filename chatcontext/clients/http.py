"""Shared httpx plumbing for capability clients."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx


class HTTPCapability:
    """Base for clients that talk to one upstream over httpx.

    With an injected ``http_client`` every call reuses it (tests pass one built
    on ``httpx.MockTransport``); otherwise each call opens a short-lived client.
    Upstream errors are raised as-is; fetchers turn them into error results.
    """

    timeout: float = 15.0

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self._http = http_client

    @asynccontextmanager
    async def session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client
