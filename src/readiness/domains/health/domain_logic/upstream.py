"""Bounded reads from external collaborators."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from readiness.domains.health.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def bounded_fetch(
    awaitable: Awaitable[T],
    *,
    timeout: float,
    source: str,
    what: str,
) -> T:
    """Await a store/provider read with a timeout.

    Cancellation propagates unchanged.

    Raises:
        UpstreamUnavailable: On timeout or any failure inside the read.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("%s read timed out after %.1fs: %s", source, timeout, what)
        raise UpstreamUnavailable(source, f"{what} timed out") from exc
    except UpstreamUnavailable:
        raise
    except Exception as exc:
        logger.exception("%s read failed: %s", source, what)
        raise UpstreamUnavailable(source, f"{what}: {exc}") from exc
