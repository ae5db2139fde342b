"""
Action dispatcher: bounded HTTP calls to external security systems.

Every call is normalized into an ActionOutcome; transport errors, timeouts and
non-2xx statuses are reported as failed outcomes, never raised.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from .models import ActionOutcome, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000


class ActionDispatcher:
    """
    Issues HTTP requests for step handlers.

    A single call makes one request per attempt; the number of attempts comes
    from the RetryPolicy passed with the call (one attempt by default).
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        """
        Initialize the dispatcher.

        Args:
            client: HTTP client to use. If None, one is created on first use
                and closed by `aclose()`.
            default_timeout_ms: Timeout applied when a call does not pass one
        """
        self._client = client
        self._owns_client = client is None
        self.default_timeout_ms = default_timeout_ms

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if the dispatcher created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ActionDispatcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def call(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        timeout_ms: Optional[int] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> ActionOutcome:
        """
        Call an external endpoint.

        Args:
            url: Absolute URL
            method: HTTP method
            headers: Extra request headers (merged over the JSON content type)
            body: Request body; dicts and lists are JSON encoded, strings sent as-is
            timeout_ms: Per-attempt timeout in milliseconds
            retry: Attempt budget and backoff; defaults to a single attempt

        Returns:
            ActionOutcome with success, status code, parsed body and error text
        """
        policy = retry or RetryPolicy()
        timeout_ms = timeout_ms or self.default_timeout_ms

        attempt = 0
        while True:
            attempt += 1
            outcome = await self._call_once(url, method, headers, body, timeout_ms)
            outcome.attempts = attempt

            if outcome.success or attempt >= policy.max_attempts or not outcome.retryable:
                return outcome

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{method.upper()} {url} failed (attempt {attempt}/{policy.max_attempts}): "
                f"{outcome.error} - retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    async def _call_once(
        self,
        url: str,
        method: str,
        headers: Optional[Dict[str, str]],
        body: Any,
        timeout_ms: int,
    ) -> ActionOutcome:
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})

        if body is None or isinstance(body, (str, bytes)):
            content = body
        else:
            content = json.dumps(body)

        timeout_s = timeout_ms / 1000
        try:
            response = await asyncio.wait_for(
                self._get_client().request(
                    method.upper(),
                    url,
                    headers=request_headers,
                    content=content,
                    timeout=timeout_s,
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error(f"{method.upper()} {url} timed out after {timeout_ms}ms")
            return ActionOutcome(
                success=False,
                error=f"Request timeout after {timeout_ms}ms",
                timed_out=True,
            )
        except Exception as e:
            logger.error(f"{method.upper()} {url} failed: {e}")
            return ActionOutcome(success=False, error=str(e) or e.__class__.__name__)

        data = self._parse_body(response)

        if response.is_success:
            return ActionOutcome(success=True, status_code=response.status_code, data=data)

        return ActionOutcome(
            success=False,
            status_code=response.status_code,
            error=f"HTTP error: {response.status_code} {response.reason_phrase}",
            data=data,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        """JSON body if it parses, otherwise the raw text."""
        try:
            return response.json()
        except ValueError:
            return response.text
