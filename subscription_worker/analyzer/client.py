"""
Analyzer gateway - resilient HTTP calls to the external content analyzer.

Provides:
- RetryPolicy: Exponential backoff with additive jitter and adaptive timeout
- AnalyzerError / AnalyzerUnavailableError / AnalyzerRejectedError
- AnalyzerGateway: Async client posting prompts to a subscription type's analyzer

The analyzer is slow and occasionally unavailable. Timeouts, connection
failures and 5xx responses are retried; each retry waits longer and
also allows the request more time, since an overloaded analyzer that is
still alive usually needs patience more than repetition. Any 4xx
response or an application-level error in the body is final.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx
import structlog

from subscription_worker.analyzer.config import AnalyzerConfig
from subscription_worker.analyzer.schemas import AnalyzerRequest
from subscription_worker.observability.metrics import get_metrics
from subscription_worker.observability.tracing import inject_trace_context
from subscription_worker.queues.backoff import ExponentialBackoff

logger = structlog.get_logger(__name__)

# Transport failures worth another attempt
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass
class RetryPolicy:
    """
    Retry schedule for analyzer calls.

    Backoff before retry n (0-indexed):
        min(base_delay * 2^n + uniform(0, jitter), max_delay)
    Timeout of attempt n (0-indexed, first attempt is 0):
        min(base_timeout * timeout_multiplier^n, max_timeout)

    Delays strictly increase while jitter stays below base_delay;
    AnalyzerConfig rejects settings where max_delay would cap one of them.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 20.0
    jitter: float = 1.0
    base_timeout: float = 120.0
    timeout_multiplier: float = 1.5
    max_timeout: float = 240.0

    @classmethod
    def from_config(cls, config: AnalyzerConfig) -> "RetryPolicy":
        """Build a policy from analyzer settings."""
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            jitter=config.jitter_seconds,
            base_timeout=config.base_timeout_seconds,
            timeout_multiplier=config.timeout_multiplier,
            max_timeout=config.max_timeout_seconds,
        )

    @property
    def max_attempts(self) -> int:
        """First attempt plus retries."""
        return self.max_retries + 1

    @property
    def backoff(self) -> ExponentialBackoff:
        """Backoff schedule with one delay per retry."""
        return ExponentialBackoff(
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            max_attempts=self.max_retries,
        )

    def calculate_backoff(self, retry: int) -> float:
        """Delay in seconds before retry number ``retry`` (0-indexed)."""
        return self.backoff.delay_for(retry)

    def timeout_for(self, attempt: int) -> float:
        """Request timeout in seconds for attempt number ``attempt`` (0-indexed)."""
        return min(self.base_timeout * (self.timeout_multiplier**attempt), self.max_timeout)

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        """5xx responses are retried; everything below is final."""
        return status_code >= 500

    @staticmethod
    def is_retryable_exception(exc: Exception) -> bool:
        """Timeouts and connection-level failures are retried."""
        return isinstance(exc, RETRYABLE_EXCEPTIONS)


class AnalyzerError(Exception):
    """Base exception for analyzer failures."""

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.attempts = attempts


class AnalyzerUnavailableError(AnalyzerError):
    """Transient failure (timeout, connection, 5xx) that outlasted every retry."""

    retryable = True


class AnalyzerRejectedError(AnalyzerError):
    """Final failure: 4xx response, application-level error, or unreadable body."""

    pass


class AnalyzerGateway:
    """
    Async analyzer client with bounded retries and adaptive timeouts.

    Usage:
        async with AnalyzerGateway() as gateway:
            result = await gateway.analyze(subscription.parser_url, request)
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the gateway.

        Args:
            config: Analyzer settings (env-driven defaults if None)
            retry_policy: Retry schedule (derived from config if None)
            client: Pre-built httpx client, mainly for tests. The gateway
                closes only clients it created itself.
        """
        self._config = config or AnalyzerConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self._config)
        self._client = client
        self._owns_client = client is None

    async def open(self) -> None:
        """Create the HTTP client if none was supplied."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.retry_policy.base_timeout)
            self._owns_client = True

    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AnalyzerGateway":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _headers(self, request: AnalyzerRequest) -> dict[str, str]:
        headers = {"X-Trace-Id": request.trace_id, **inject_trace_context()}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    async def analyze(self, endpoint: str, request: AnalyzerRequest) -> dict[str, Any]:
        """
        Send prompts to the analyzer and return its decoded response.

        Args:
            endpoint: Analyzer base URL (the subscription type's parser_url)
            request: Prompts and context for this run

        Returns:
            Raw analyzer response body

        Raises:
            AnalyzerRejectedError: On 4xx, application-level errors or bad JSON (no retry)
            AnalyzerUnavailableError: When transient failures exhaust all retries;
                carries the last failure's message
        """
        if self._client is None:
            raise RuntimeError("AnalyzerGateway is not open. Call open() or use async with.")

        url = endpoint.rstrip("/") + self._config.endpoint_path
        payload = request.to_payload()
        headers = self._headers(request)
        policy = self.retry_policy
        metrics = get_metrics()
        started = time.monotonic()

        last_error: AnalyzerUnavailableError | None = None
        last_cause: Exception | None = None

        try:
            for attempt in range(policy.max_attempts):
                timeout = policy.timeout_for(attempt)
                try:
                    response = await self._client.post(
                        url, json=payload, headers=headers, timeout=timeout
                    )
                except RETRYABLE_EXCEPTIONS as e:
                    last_cause = e
                    last_error = AnalyzerUnavailableError(
                        f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                        attempts=attempt + 1,
                    )
                else:
                    if policy.is_retryable_status(response.status_code):
                        last_cause = None
                        last_error = AnalyzerUnavailableError(
                            f"Analyzer returned status {response.status_code}",
                            status_code=response.status_code,
                            response_body=response.text,
                            attempts=attempt + 1,
                        )
                    else:
                        result = self._decode(response, attempt + 1)
                        metrics.record_analyzer_attempt("success")
                        logger.info(
                            "Analyzer call succeeded",
                            url=url,
                            attempts=attempt + 1,
                            timeout=timeout,
                        )
                        return result

                if attempt < policy.max_retries:
                    delay = policy.calculate_backoff(attempt)
                    metrics.record_analyzer_attempt("retry")
                    logger.warning(
                        "Analyzer call failed, retrying",
                        url=url,
                        error=str(last_error),
                        attempt=attempt + 1,
                        max_attempts=policy.max_attempts,
                        retry_delay=round(delay, 2),
                        next_timeout=policy.timeout_for(attempt + 1),
                    )
                    await asyncio.sleep(delay)

            metrics.record_analyzer_attempt("exhausted")
            logger.error(
                "Analyzer retries exhausted",
                url=url,
                attempts=policy.max_attempts,
                error=str(last_error),
            )
            raise last_error from last_cause

        except AnalyzerRejectedError as e:
            metrics.record_analyzer_attempt("fatal")
            logger.error(
                "Analyzer rejected request",
                url=url,
                status_code=e.status_code,
                error=str(e),
                attempts=e.attempts,
            )
            raise
        finally:
            metrics.analyzer_latency.observe(time.monotonic() - started)

    @staticmethod
    def _decode(response: httpx.Response, attempts: int) -> dict[str, Any]:
        """Validate a non-5xx response and decode its body."""
        if response.status_code >= 400:
            raise AnalyzerRejectedError(
                f"Analyzer returned status {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                attempts=attempts,
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise AnalyzerRejectedError(
                f"Analyzer returned invalid JSON: {e}",
                status_code=response.status_code,
                response_body=response.text[:1000],
                attempts=attempts,
            ) from e

        if isinstance(body, list):
            body = {"results": body}
        if not isinstance(body, dict):
            raise AnalyzerRejectedError(
                f"Analyzer returned unexpected body type {type(body).__name__}",
                status_code=response.status_code,
                attempts=attempts,
            )

        if body.get("status") == "error" or body.get("success") is False:
            message = body.get("error") or body.get("message") or "unknown analyzer error"
            raise AnalyzerRejectedError(
                f"Analyzer reported an error: {message}",
                status_code=response.status_code,
                response_body=response.text[:1000],
                attempts=attempts,
            )
        return body
