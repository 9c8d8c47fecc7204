"""Outbound registration webhook with a bounded retry policy.

New registrations are announced to an automation webhook.  Delivery is
attempted up to ``RetryPolicy.max_attempts`` times; the wait before retry
*n* is ``n * base_delay_s`` (linear: 1 min, 2 min with the defaults).
Terminal failure is logged and reported in the returned outcome, never
raised.  Runs as a background task after the registration response.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_s < 0:
            raise ValueError("base_delay_s must not be negative")

    def delay_after(self, attempt: int) -> float | None:
        """Seconds to wait after failed *attempt*, or ``None`` when exhausted."""
        if attempt >= self.max_attempts:
            return None
        return attempt * self.base_delay_s

    def delays(self) -> list[float]:
        return [attempt * self.base_delay_s for attempt in range(1, self.max_attempts)]


@dataclass
class WebhookOutcome:
    delivered: bool
    attempts: int
    status_code: int | None = None
    last_error: str | None = None


class WebhookNotifier:
    """POST JSON payloads to a webhook under a ``RetryPolicy``."""

    def __init__(
        self,
        url: str | None,
        policy: RetryPolicy | None = None,
        *,
        client: httpx.Client | None = None,
        timeout_s: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.url = url
        self.policy = policy or RetryPolicy()
        self.client = client
        self.timeout_s = timeout_s
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def _post(self, payload: dict) -> httpx.Response:
        if self.client is not None:
            return self.client.post(self.url, json=payload, timeout=self.timeout_s)
        return httpx.post(self.url, json=payload, timeout=self.timeout_s)

    def deliver(self, payload: dict) -> WebhookOutcome:
        if not self.enabled:
            logger.debug("Webhook URL not configured, skipping delivery")
            return WebhookOutcome(delivered=False, attempts=0, last_error="disabled")

        attempt = 0
        last_error: str | None = None
        status_code: int | None = None
        while True:
            attempt += 1
            logger.info("Sending webhook attempt %d/%d", attempt, self.policy.max_attempts)
            try:
                response = self._post(payload)
                status_code = response.status_code
                response.raise_for_status()
                logger.info("Webhook delivered with status %d", status_code)
                return WebhookOutcome(delivered=True, attempts=attempt, status_code=status_code)
            except httpx.HTTPError as exc:
                last_error = str(exc) or type(exc).__name__
                logger.warning("Webhook attempt %d failed: %s", attempt, last_error)

            delay = self.policy.delay_after(attempt)
            if delay is None:
                break
            logger.info("Retrying webhook in %.0f second(s)", delay)
            self._sleep(delay)

        logger.error("Webhook failed after %d attempts", attempt)
        return WebhookOutcome(
            delivered=False, attempts=attempt, status_code=status_code, last_error=last_error
        )
