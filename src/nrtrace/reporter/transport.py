# src/nrtrace/reporter/transport.py
"""httpx transports for the vendor ingest APIs.

Both transports share request construction and status classification; they
only differ in whether the POST blocks or suspends.
"""

from __future__ import annotations

import threading

import httpx
import structlog

from nrtrace import __version__
from nrtrace.config import BridgeSettings
from nrtrace.errors import ReportError, Timeout, TransportError
from nrtrace.reporter.core import Endpoint, classify_status

logger = structlog.get_logger(__name__)


def _base_headers(api_key: str) -> dict[str, str]:
    return {
        "Api-Key": api_key,
        "Content-Type": "application/json",
        "Content-Encoding": "gzip",
        "User-Agent": f"nrtrace/{__version__}",
    }


def _check(response: httpx.Response) -> None:
    error = classify_status(response.status_code, response.headers)
    if error is not None:
        raise error


def _chained(error: ReportError, cause: Exception) -> ReportError:
    error.__cause__ = cause
    return error


class HttpTransport:
    """Blocking transport over a shared httpx.Client.

    httpx.Client is thread-safe; one client is kept for connection reuse.
    httpx applies its timeout to each connect/read/write separately, so a
    server trickling bytes can hold a request open for as long as it likes.
    Each attempt therefore runs on a short-lived daemon thread and the caller
    waits at most the attempt timeout for it. An attempt that overruns is
    abandoned: its client is closed, which tears the connection down, and
    replaced by a fresh one.
    """

    def __init__(self, api_key: str, *, timeout: float = 10.0, client: httpx.Client | None = None) -> None:
        self._headers = _base_headers(api_key)
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> HttpTransport:
        return cls(settings.api.key.get_secret_value(), timeout=settings.request_timeout)

    def transmit(self, endpoint: Endpoint, body: bytes, *, timeout: float | None = None) -> None:
        limit = self._timeout if timeout is None else min(self._timeout, timeout)
        if limit <= 0:
            raise Timeout(f"{endpoint.kind} request has no time left")
        client = self._client
        outcome: list[httpx.Response | Exception] = []
        worker = threading.Thread(
            target=self._post,
            args=(client, endpoint, body, limit, outcome),
            name="nrtrace-transmit",
            daemon=True,
        )
        worker.start()
        worker.join(limit)
        if worker.is_alive():
            self._abandon(client)
            raise Timeout(f"{endpoint.kind} request timed out after {limit:.3f}s")
        if not outcome:
            raise TransportError(f"{endpoint.kind} request ended without a response")
        result = outcome[0]
        if isinstance(result, Exception):
            raise result
        _check(result)

    def _post(
        self,
        client: httpx.Client,
        endpoint: Endpoint,
        body: bytes,
        limit: float,
        outcome: list[httpx.Response | Exception],
    ) -> None:
        # Runs on the attempt thread; errors are handed back through outcome
        try:
            outcome.append(
                client.post(
                    endpoint.url,
                    content=body,
                    headers={**self._headers, **endpoint.headers},
                    timeout=limit,
                )
            )
        except httpx.TimeoutException as e:
            outcome.append(_chained(Timeout(f"{endpoint.kind} request timed out after {limit:.3f}s"), e))
        except httpx.TransportError as e:
            outcome.append(_chained(TransportError(f"{endpoint.kind} request failed: {type(e).__name__}: {e}"), e))
        except Exception as e:
            outcome.append(e)

    def _abandon(self, client: httpx.Client) -> None:
        if not self._owns_client:
            logger.warning("Abandoning overrunning request on a borrowed client")
            return
        self._client = httpx.Client(timeout=self._timeout)
        try:
            client.close()
        except Exception as e:
            logger.warning("Closing abandoned client failed", error=str(e))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class AsyncHttpTransport:
    """Suspending transport over a shared httpx.AsyncClient."""

    def __init__(self, api_key: str, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._headers = _base_headers(api_key)
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> AsyncHttpTransport:
        return cls(settings.api.key.get_secret_value(), timeout=settings.request_timeout)

    async def transmit(self, endpoint: Endpoint, body: bytes) -> None:
        try:
            response = await self._client.post(
                endpoint.url,
                content=body,
                headers={**self._headers, **endpoint.headers},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise Timeout(f"{endpoint.kind} request timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise TransportError(f"{endpoint.kind} request failed: {type(e).__name__}: {e}") from e
        _check(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
