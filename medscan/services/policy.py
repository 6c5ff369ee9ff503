# medscan/services/policy.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Type, TypeVar

import httpx

from medscan.errors import ConfigurationError, IntegrationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """
    Failures worth one more attempt: timeouts, dropped connections,
    rate limiting and server-side errors.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    if isinstance(exc, IntegrationError):
        return exc.transient
    return False


async def call_with_policy(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    error_cls: Type[IntegrationError],
    timeout: float,
    retries: int = 1,
    backoff: float = 0.5,
    transient: Callable[[BaseException], bool] = is_transient,
) -> T:
    """
    Run one adapter request with a per-attempt timeout and at most
    `retries` extra attempts for transient failures.

    Whatever is left after the policy gives up is raised as `error_cls`.
    ConfigurationError passes through untouched.
    """
    attempts = max(retries, 0) + 1

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except ConfigurationError:
            raise
        except Exception as exc:  # mapped below
            retry = transient(exc)
            if not retry or attempt == attempts:
                if isinstance(exc, error_cls):
                    raise
                message = str(exc) or exc.__class__.__name__
                raise error_cls(f"{label} failed: {message}", transient=retry) from exc

            wait_time = backoff * attempt
            logger.warning(
                "%s attempt %d/%d failed (%s); retrying in %.1fs",
                label, attempt, attempts, exc.__class__.__name__, wait_time,
            )
            await asyncio.sleep(wait_time)

    raise AssertionError("unreachable")  # pragma: no cover
