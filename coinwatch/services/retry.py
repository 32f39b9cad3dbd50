"""Bounded backoff policy for rate-limited (HTTP 429) responses.

The policy is a pure function of the attempt number and the response
headers.  It never sleeps; the caller suspends for the returned delay and
re-issues the request, or surfaces ``RateLimitExceeded`` on ``STOP``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from coinwatch.config import RETRY_POLICY


class _Stop(Enum):
    STOP = "stop"

    def __repr__(self) -> str:
        return "STOP"


STOP = _Stop.STOP


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = RETRY_POLICY["max_attempts"]
    default_delay_ms: int = RETRY_POLICY["default_delay_ms"]
    max_delay_ms: int = RETRY_POLICY["max_delay_ms"]


DEFAULT_POLICY = RetryPolicy()


def retry_after_ms(
    headers: Mapping[str, str] | None,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> int:
    """Return the server's wait hint in milliseconds.

    Only a positive integer number of seconds is honored; an absent,
    HTTP-date, zero or negative ``Retry-After`` falls back to the policy
    default.  Header lookup is case-insensitive for plain dicts too.
    """
    raw = None
    if headers:
        raw = headers.get("Retry-After")
        if raw is None:
            raw = next(
                (v for k, v in headers.items() if k.lower() == "retry-after"),
                None,
            )

    try:
        seconds = int(str(raw).strip()) if raw is not None else 0
    except ValueError:
        seconds = 0

    if seconds <= 0:
        return policy.default_delay_ms
    return min(seconds * 1000, policy.max_delay_ms)


def retry_delay_ms(
    attempt: int,
    headers: Mapping[str, str] | None,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> int | _Stop:
    """Delay before the next request, or ``STOP`` once the budget is spent.

    *attempt* is the 1-based number of the request that was just rate
    limited.
    """
    if attempt >= policy.max_attempts:
        return STOP
    return retry_after_ms(headers, policy)
