"""Failure policy for browser sub-steps.

Every engine call made while handling a command is named here and
classified as either CRITICAL (failure propagates as NavigationError) or
BEST_EFFORT (failure is logged at DEBUG and a default is returned).
Whole commands are bounded by ``run_composite``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from enum import Enum
from typing import Any, TypeVar

from chat_browser.errors import BrowserError, NavigationError

logger = logging.getLogger("chat_browser.policy")

T = TypeVar("T")


class StepPolicy(Enum):
    CRITICAL = "critical"
    BEST_EFFORT = "best_effort"


STEP_POLICY: dict[str, StepPolicy] = {
    # Navigation the user asked for
    "goto": StepPolicy.CRITICAL,
    "reload": StepPolicy.CRITICAL,
    "input": StepPolicy.CRITICAL,
    "new_context": StepPolicy.CRITICAL,
    "new_page": StepPolicy.CRITICAL,
    "screenshot": StepPolicy.CRITICAL,
    # History moves may have nowhere to go
    "history": StepPolicy.BEST_EFFORT,
    # Initial/home loads of fresh tabs and tabs rebuilt after a mode switch
    "open_home": StepPolicy.BEST_EFFORT,
    "restore_url": StepPolicy.BEST_EFFORT,
    # Typing into an input that was found
    "fill": StepPolicy.BEST_EFFORT,
    # Settling after an action
    "load_state": StepPolicy.BEST_EFFORT,
    "settle": StepPolicy.BEST_EFFORT,
    "zoom": StepPolicy.BEST_EFFORT,
    # Reads used only for display
    "read_url": StepPolicy.BEST_EFFORT,
    "read_title": StepPolicy.BEST_EFFORT,
    "extract_links": StepPolicy.BEST_EFFORT,
    "extract_media": StepPolicy.BEST_EFFORT,
    # Teardown
    "close_page": StepPolicy.BEST_EFFORT,
    "close_context": StepPolicy.BEST_EFFORT,
}


def policy_for(name: str) -> StepPolicy:
    try:
        return STEP_POLICY[name]
    except KeyError:
        raise KeyError(f"No failure policy for step '{name}'") from None


async def step(name: str, awaitable: Awaitable[T], default: Any = None) -> T | Any:
    """Await one engine call under the policy registered for ``name``."""
    policy = policy_for(name)
    try:
        return await awaitable
    except BrowserError:
        raise
    except asyncio.CancelledError:
        raise
    except Exception as e:
        if policy is StepPolicy.BEST_EFFORT:
            logger.debug("best-effort step %s failed: %s", name, e)
            return default
        logger.info("step %s failed: %s", name, e)
        raise NavigationError(f"{name} failed: {e}") from e


async def run_composite(awaitable: Awaitable[T], timeout: float) -> T:
    """Run a composite operation under a single total timeout.

    Partial engine state is not rolled back when the timeout fires.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("composite operation exceeded %.1fs", timeout)
        raise NavigationError("Operation timed out.") from e
