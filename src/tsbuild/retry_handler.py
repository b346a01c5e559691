"""Bounded polling with a fixed delay.

A build waits on Azure three times: for the VM to be running and
provisioned, for the in-guest agent to report Ready, and for Tailscale to
answer `tailscale status`. All three are the same loop: observe, test,
sleep, give up after N attempts. poll_until is that loop.

Design Philosophy:
- Fixed attempt count and fixed delay, no backoff
- Exhaustion is reported, not raised; the caller decides whether it is fatal
- Observable: one log line per failed attempt

Usage:
    result = poll_until(
        lambda: cli.get_agent_status(rg, name),
        lambda status: status == "Ready",
        max_attempts=30,
        delay=10,
        description="VM agent",
    )
    if not result.succeeded:
        ...
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollResult(Generic[T]):
    """Outcome of a bounded poll."""

    succeeded: bool
    value: T | None
    attempts: int
    last_error: Exception | None = None


def poll_until(
    fetch: Callable[[], T],
    predicate: Callable[[T], bool],
    *,
    max_attempts: int,
    delay: float,
    description: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, T | None], None] | None = None,
    tolerated_exceptions: tuple[type[Exception], ...] = (),
) -> PollResult[T]:
    """Call fetch until predicate(value) holds or attempts run out.

    Args:
        fetch: Observation to take on each attempt
        predicate: Success test applied to each observation
        max_attempts: Upper bound on fetch calls (must be >= 1)
        delay: Seconds to sleep between attempts (not after the last)
        description: Name used in log messages
        sleep: Sleep function (tests pass a no-op)
        on_retry: Called with (attempt, value) after each failed attempt
        tolerated_exceptions: Exceptions from fetch that count as a failed
            observation instead of propagating

    Returns:
        PollResult with the last observed value
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    value: T | None = None
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            value = fetch()
            last_error = None
        except tolerated_exceptions as e:
            value = None
            last_error = e
            logger.debug(f"{description}: attempt {attempt}/{max_attempts} errored: {e}")
        else:
            if predicate(value):
                if attempt > 1:
                    logger.debug(f"{description} reached on attempt {attempt}/{max_attempts}")
                return PollResult(succeeded=True, value=value, attempts=attempt)

        if on_retry:
            on_retry(attempt, value)

        if attempt < max_attempts:
            sleep(delay)

    logger.debug(f"{description} not reached after {max_attempts} attempts")
    return PollResult(
        succeeded=False, value=value, attempts=max_attempts, last_error=last_error
    )


__all__ = ["PollResult", "poll_until"]
