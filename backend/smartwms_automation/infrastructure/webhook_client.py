"""Resilient Webhook Client — wraps httpx.AsyncClient with retry, backoff, and error mapping.

Invariants:
    - Rate limits (429): exponential backoff with jitter, respects Retry-After header
    - Transient errors (5xx, connection, timeout): max_retries retries with backoff
    - Client errors (4xx except 429): immediate failure, no retry
    - Timeout on the final attempt -> ActionTimeoutError; anything else -> ActionExecutionError
    - Response bodies are truncated to response_max_chars before leaving the client

Design Decisions:
    - Wrapper over raw client: isolates retry logic from action dispatch (ADR: single responsibility)
    - ±25% jitter on backoff: prevents thundering herd against the same receiver
    - One AsyncClient per process (connection pooling); per-request timeout from the rule
"""

import asyncio
import logging
import random

import httpx

from smartwms_automation.core.domain_types import ActionType
from smartwms_automation.core.errors import ActionExecutionError, ActionTimeoutError
from smartwms_automation.core.repository_protocols import WebhookRequest, WebhookResponse

logger = logging.getLogger(__name__)

_ACTION = ActionType.SEND_WEBHOOK.value


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class ResilientWebhookClient:
    """Sends rule webhooks with retry logic, timeouts, and error mapping."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 500,
        max_delay_ms: int = 10_000,
        timeout_seconds: float = 30.0,
        response_max_chars: int = 1000,
        client: httpx.AsyncClient | None = None,
    ):
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.timeout_seconds = timeout_seconds
        self.response_max_chars = response_max_chars

    async def send(self, request: WebhookRequest) -> WebhookResponse:
        """Send request with automatic retry on transient failures."""
        timeout = request.timeout_seconds or self.timeout_seconds
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    content=request.body,
                    timeout=timeout,
                )
            except httpx.TimeoutException as e:
                await self._handle_timeout(e, attempt, timeout)
                continue
            except httpx.TransportError as e:
                await self._handle_transient_error(e, attempt)
                continue

            if response.is_success:
                self._log_success(response, attempt)
                return self._to_response(response, attempt)
            if _is_retryable_status(response.status_code):
                await self._handle_retryable_status(response, attempt)
                continue
            raise self._status_error(response)
        raise ActionExecutionError("Webhook retries exhausted", _ACTION)

    async def aclose(self) -> None:
        await self.client.aclose()

    def _to_response(self, response: httpx.Response, attempt: int) -> WebhookResponse:
        return WebhookResponse(
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            body=self._truncate(response.text),
            attempts=attempt + 1,
        )

    def _log_success(self, response: httpx.Response, attempt: int) -> None:
        logger.info(
            f"Webhook success: {response.status_code}",
            extra={
                "attempt": attempt + 1,
                "action_type": _ACTION,
                "duration_ms": int(response.elapsed.total_seconds() * 1000),
            },
        )

    async def _handle_retryable_status(
        self, response: httpx.Response, attempt: int,
    ) -> None:
        """Back off on 429/5xx, or raise once retries are spent."""
        if attempt >= self.max_retries:
            raise self._status_error(response, attempts=attempt + 1)
        retry_after_ms = self._extract_retry_after(response)
        delay = retry_after_ms or self._backoff(attempt)
        logger.warning(
            f"Webhook returned {response.status_code}, retry after {delay}ms "
            f"(attempt {attempt + 1})",
            extra={"attempt": attempt + 1, "action_type": _ACTION},
        )
        await asyncio.sleep(delay / 1000)

    async def _handle_timeout(
        self, e: httpx.TimeoutException, attempt: int, timeout: float,
    ) -> None:
        if attempt >= self.max_retries:
            raise ActionTimeoutError(
                f"Webhook timed out after {timeout}s ({attempt + 1} attempt(s))",
                _ACTION, timeout_seconds=timeout,
            )
        delay = self._backoff(attempt)
        logger.warning(
            f"Webhook timeout, retry after {delay}ms",
            extra={"attempt": attempt + 1, "action_type": _ACTION},
        )
        await asyncio.sleep(delay / 1000)

    async def _handle_transient_error(self, e: Exception, attempt: int) -> None:
        if attempt >= self.max_retries:
            raise ActionExecutionError(
                f"Webhook request failed after {self.max_retries} retries: {e}",
                _ACTION, code="WEBHOOK_CONNECTION_ERROR", retryable=True,
            )
        delay = self._backoff(attempt)
        logger.warning(
            f"Webhook transient error, retry after {delay}ms: {e}",
            extra={"attempt": attempt + 1, "action_type": _ACTION},
        )
        await asyncio.sleep(delay / 1000)

    def _status_error(
        self, response: httpx.Response, attempts: int = 1,
    ) -> ActionExecutionError:
        error = ActionExecutionError(
            f"Webhook failed: {response.status_code} - {response.reason_phrase}",
            _ACTION,
            code="WEBHOOK_HTTP_ERROR",
            retryable=_is_retryable_status(response.status_code),
        )
        error.context.debug_info = {
            "status_code": response.status_code,
            "response_body": self._truncate(response.text),
            "attempts": attempts,
        }
        return error

    def _truncate(self, text: str) -> str:
        if len(text) > self.response_max_chars:
            return text[:self.response_max_chars] + "..."
        return text

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    def _extract_retry_after(self, response: httpx.Response) -> int | None:
        """Retry-After header in milliseconds (seconds form only), capped at max delay."""
        val = response.headers.get("retry-after")
        if val and val.strip().isdigit():
            return min(int(val) * 1000, self.max_delay_ms)
        return None

