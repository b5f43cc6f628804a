"""Shared aiohttp plumbing for the remote services.

Both the move database and the position evaluator are free public
services that rate-limit and occasionally go away. Every request gets a
total timeout and a bounded retry; a 429 opens a backoff window during
which calls fail fast instead of hammering the service.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import aiohttp

from trainer.errors import MalformedResponseError, ServiceUnavailableError

logger = logging.getLogger(__name__)

_RATE_LIMIT_BACKOFF_S = 60.0


class JsonServiceClient:
    """Base class for JSON-over-HTTP service clients."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        retries: int = 1,
        retry_delay: float = 0.5,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url
        self._timeout = timeout
        self._retries = max(0, retries)
        self._retry_delay = retry_delay
        self._session = session
        self._owns_session = session is None
        self._backoff_until = 0.0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _unavailable(self, message: str, status: int | None = None) -> ServiceUnavailableError:
        return ServiceUnavailableError(self.service_name, message, status=status)

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        json_body: dict | None = None,
    ) -> Any:
        """Send a request and decode the JSON body.

        Timeouts, connection errors and 5xx responses are retried up to
        ``retries`` times. 429 and other 4xx responses are not retried.

        Returns:
            The decoded JSON payload.

        Raises:
            ServiceUnavailableError: If the service cannot be reached.
            MalformedResponseError: If the body is not JSON.
        """
        remaining = self._backoff_until - time.monotonic()
        if remaining > 0:
            raise self._unavailable(f"rate limited, retry in {int(remaining)}s", status=429)

        attempts = self._retries + 1
        attempt = 0

        while True:
            try:
                session = await self._get_session()
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as response:
                    status = response.status
                    if status == 429:
                        self._backoff_until = time.monotonic() + _RATE_LIMIT_BACKOFF_S
                        raise self._unavailable("rate limited", status=429)
                    if status >= 500:
                        error = self._unavailable(f"HTTP {status}", status=status)
                    elif status >= 400:
                        raise self._unavailable(f"HTTP {status}", status=status)
                    else:
                        try:
                            return await response.json(content_type=None)
                        except (json.JSONDecodeError, aiohttp.ContentTypeError, ValueError) as exc:
                            raise MalformedResponseError(
                                self.service_name, f"invalid JSON body: {exc}"
                            ) from exc
            except asyncio.TimeoutError:
                error = self._unavailable("timeout")
            except aiohttp.ClientError as exc:
                error = self._unavailable(f"connection failed: {exc}")

            attempt += 1
            if attempt >= attempts:
                raise error
            logger.debug("%s request failed (%s), retrying", self.service_name, error)
            await asyncio.sleep(self._retry_delay * attempt)
