"""
Shared aiohttp session handling for the HTTP collaborators.
"""

import asyncio
import logging
import random
import ssl
from typing import Any, Dict, Optional

import aiohttp
import certifi


class HttpServiceClient:
    """
    Base for the store, generation and nearby-region clients.

    Owns one lazily created ClientSession with certifi-backed SSL and a
    small retry loop for 429s, 5xx responses and timeouts.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        headers: Optional[Dict[str, str]] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.headers = headers or {}
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger(self.__class__.__module__)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp ClientSession with proper SSL configuration."""
        if self.session is None or self.session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=self.timeout,
                connector=connector
            )
        return self.session

    async def close_session(self):
        """Close aiohttp session for cleanup."""
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_session()
        return False

    async def _request_json(
        self,
        method: str,
        path: str = '',
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Issue a request and decode the JSON body.

        Retries rate limits, server errors and timeouts with exponential
        backoff; raises the last aiohttp/asyncio error once retries run out.
        Client errors other than 429 are raised immediately.
        """
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_retries):
            try:
                async with session.request(method, url, params=params, json=json_body) as response:
                    if response.status == 429 or response.status >= 500:
                        delay = self.base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                        self.logger.warning(
                            f"{method} {url} returned {response.status} "
                            f"(attempt {attempt + 1}/{self.max_retries}). Retrying after {delay:.1f}s..."
                        )
                        last_error = aiohttp.ClientResponseError(
                            response.request_info,
                            response.history,
                            status=response.status,
                            message=response.reason or '',
                        )
                        await asyncio.sleep(delay)
                        continue

                    response.raise_for_status()
                    if response.content_type != 'application/json':
                        return None
                    return await response.json()

            except aiohttp.ClientResponseError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                delay = self.base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                self.logger.warning(
                    f"{method} {url} failed: {type(e).__name__} "
                    f"(attempt {attempt + 1}/{self.max_retries}). Retrying after {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        if last_error is not None:
            raise last_error
        return None
