"""Leaky-bucket pacing and throttle-aware retries for target platform calls."""

import math
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import structlog

from catalog_sync.errors import (
    ThrottledError,
    ThrottleExhaustedError,
    ThrottleStatus,
    TransientTransportError,
)
from catalog_sync.models.config import SyncConfig
from catalog_sync.utils.retry import backoff_delay

log = structlog.stdlib.get_logger()


class Transport(Protocol):
    def post(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]: ...


@dataclass
class GraphQLCall:
    """One GraphQL request and its advertised cost in bucket points."""

    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    cost: float | None = None
    name: str = "graphql"


@dataclass
class GraphQLResponse:
    data: dict[str, Any]
    extensions: dict[str, Any] = field(default_factory=dict)


class RateLimitedClient:
    """
    Executes calls against the target while respecting its request budget.

    The client keeps an estimate of the bucket level, refilled at the
    restore rate and corrected from every response's throttle status. Each
    call waits for the minimum spacing since the previous call and for the
    estimate to cover the call's cost. Waits block the calling thread only.
    """

    def __init__(
        self,
        transport: Transport,
        config: SyncConfig,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.transport = transport
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._capacity = config.bucket_capacity
        self._restore_rate = config.restore_rate
        self._available = config.bucket_capacity
        self._estimated_at: float | None = None
        self._last_call_at: float | None = None

    @property
    def min_spacing_ms(self) -> int:
        return self.config.min_call_spacing_ms

    def estimated_available(self, now: float | None = None) -> float:
        """Bucket level estimate at ``now`` (defaults to the current clock)."""
        if self._estimated_at is None:
            return self._available
        now = self._clock() if now is None else now
        refilled = self._available + max(0.0, now - self._estimated_at) * self._restore_rate
        return min(self._capacity, refilled)

    def throttle_wait_ms(self, status: ThrottleStatus, cost: float) -> int:
        """
        Wait after a throttled response that reported the bucket state.

        Returns:
            max(ceil(needed / restore_rate * 1000) + buffer, min spacing), or
            the min spacing when the bucket already covers the cost
        """
        needed = cost - status.currently_available
        if needed <= 0:
            return self.min_spacing_ms
        restore_rate = status.restore_rate or self._restore_rate
        wait = math.ceil(needed / restore_rate * 1000) + self.config.throttle_buffer_ms
        return max(wait, self.min_spacing_ms)

    def backoff_ms(self, attempt: int) -> float:
        """Exponential backoff with up to one second of jitter, capped."""
        return backoff_delay(
            attempt,
            self.config.base_backoff_ms,
            self.config.max_backoff_ms,
            jitter=self._rng() * 1000,
        )

    def execute(self, call: GraphQLCall) -> GraphQLResponse:
        """
        Execute a call, pacing before it and retrying throttling and transient failures.

        Raises:
            ThrottleExhaustedError: If the call is still throttled after
                ``max_retries`` retries
            TransientTransportError: If transient failures persist after
                ``max_retries`` retries
            TargetApiError: For non-retryable API errors
        """
        cost = call.cost or self.config.default_request_cost
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            self._pace(cost, call.name)
            self._record_call(cost)
            try:
                body = self.transport.post(call.query, call.variables)
            except ThrottledError as e:
                if e.status is not None:
                    self._observe(e.status)
                if attempt == max_retries:
                    log.error(
                        "target_call_throttle_exhausted",
                        call=call.name,
                        attempts=attempt + 1,
                    )
                    raise ThrottleExhaustedError(attempt + 1, e) from e
                if e.status is not None:
                    wait_ms = self.throttle_wait_ms(e.status, e.status.requested_cost or cost)
                else:
                    wait_ms = self.backoff_ms(attempt)
                log.warning(
                    "target_call_throttled",
                    call=call.name,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    wait_ms=wait_ms,
                    currently_available=e.status.currently_available if e.status else None,
                )
                self._sleep(wait_ms / 1000)
                continue
            except TransientTransportError as e:
                if attempt == max_retries:
                    log.error(
                        "target_call_failed",
                        call=call.name,
                        attempts=attempt + 1,
                        error=str(e),
                    )
                    raise
                wait_ms = self.backoff_ms(attempt)
                log.warning(
                    "retrying_target_call",
                    call=call.name,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    wait_ms=wait_ms,
                    error=str(e),
                )
                self._sleep(wait_ms / 1000)
                continue

            extensions = body.get("extensions") or {}
            status = ThrottleStatus.from_extensions(extensions)
            if status is not None:
                self._observe(status)
            return GraphQLResponse(data=body.get("data") or {}, extensions=extensions)

        raise AssertionError("unreachable")

    def _pace(self, cost: float, name: str) -> None:
        now = self._clock()
        wait = 0.0
        if self._last_call_at is not None:
            wait = max(0.0, self.min_spacing_ms / 1000 - (now - self._last_call_at))
        available = self.estimated_available(now + wait)
        if available < cost:
            wait += (cost - available) / self._restore_rate
        if wait > 0:
            log.debug("pacing_target_call", call=name, wait_ms=round(wait * 1000), cost=cost)
            self._sleep(wait)

    def _record_call(self, cost: float) -> None:
        now = self._clock()
        self._available = self.estimated_available(now) - cost
        self._estimated_at = now
        self._last_call_at = now

    def _observe(self, status: ThrottleStatus) -> None:
        self._available = status.currently_available
        self._restore_rate = status.restore_rate or self._restore_rate
        if status.maximum_available:
            self._capacity = status.maximum_available
        self._estimated_at = self._clock()
