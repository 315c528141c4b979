"""
AI session summary client.

Calls the ``generate-session-summary`` endpoint, which writes a short
personalized summary of a completed session and stores it on the session row.
Used by the engine as a fire-and-forget ``SummaryRequester``.
"""

from __future__ import annotations

import asyncio

import httpx
from loguru import logger

from config import Settings, get_settings
from practice_engine.errors import CollaboratorError


class SessionSummaryClient:
    """HTTP client for the session summary service."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        timeout_ms: int = 30000,
        retry_attempts: int = 2,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize summary client.

        Args:
            api_url: Base URL of the functions endpoint
            api_key: Bearer token sent with every request
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts on timeouts, 5xx and transport errors
            backoff_seconds: First retry delay, doubled on each attempt
            transport: Optional httpx transport (tests)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SessionSummaryClient | None:
        """Client for the configured endpoint, or None when no endpoint is set."""
        settings = settings or get_settings()
        if not settings.has_summary_configured():
            return None
        return cls(
            api_url=settings.summary_api_url,
            api_key=settings.summary_api_key,
            timeout_ms=settings.summary_timeout_ms,
            retry_attempts=settings.summary_retry_attempts,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def request_summary(self, session_id: str) -> str | None:
        """
        Generate (or fetch the existing) summary for a completed session.

        Returns:
            The summary text, or None if the service produced none

        Raises:
            CollaboratorError: 4xx response, malformed body, or every attempt failed
        """
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.post(
                    f"{self.api_url}/generate-session-summary",
                    json={"sessionId": session_id},
                )
                response.raise_for_status()
                payload = response.json()
                summary = payload.get("summary") if isinstance(payload, dict) else payload
                if not isinstance(payload, dict) or (summary is not None and not isinstance(summary, str)):
                    raise CollaboratorError(f"Malformed summary response: {payload!r:.80}")
                return summary

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    "Summary timeout on attempt {}/{} for session {}",
                    attempt + 1,
                    self.retry_attempts,
                    session_id,
                )

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    # Don't retry on 4xx client errors
                    logger.error("Summary client error {} for session {}", e.response.status_code, session_id)
                    raise CollaboratorError(f"Summary request rejected: {e.response.status_code}") from e
                logger.warning(
                    "Summary server error {} on attempt {}/{}",
                    e.response.status_code,
                    attempt + 1,
                    self.retry_attempts,
                )

            except httpx.RequestError as e:
                last_error = e
                logger.warning("Summary request error on attempt {}/{}: {}", attempt + 1, self.retry_attempts, e)

            except ValueError as e:
                raise CollaboratorError(f"Malformed summary response: {e}") from e

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.backoff_seconds * 2 ** attempt)

        raise CollaboratorError(
            f"Summary request failed after {self.retry_attempts} attempts: {last_error}"
        ) from last_error
