"""Best-effort side effects.

Collaborator calls that must never fail the primary operation (notifications,
stat counters, cache invalidation) are awaited through ``run_side_effect``,
which logs a failure and reports it as a value instead of raising.
"""

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

import structlog


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SideEffectResult:
    """Outcome of a best-effort collaborator call."""

    name: str
    ok: bool
    error: str | None = None


async def run_side_effect(
    name: str, operation: Awaitable[Any], **context: Any
) -> SideEffectResult:
    """Await ``operation`` and convert any failure into a logged result."""
    try:
        await operation
    except Exception as e:
        logger.warning(
            "side_effect_failed",
            side_effect=name,
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )
        return SideEffectResult(name=name, ok=False, error=str(e))
    return SideEffectResult(name=name, ok=True)


def failed_effects(results: list[SideEffectResult]) -> list[str]:
    """Names of the side effects that did not complete."""
    return [result.name for result in results if not result.ok]
