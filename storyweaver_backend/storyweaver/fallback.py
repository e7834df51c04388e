import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = Tuple[str, Callable[[], Awaitable[Optional[T]]]]

async def attempt_chain(strategies: Sequence[Strategy], label: str = "request") -> Optional[T]:
    """Run strategies in order and return the first non-empty result.

    A strategy fails by raising or by returning None; either way the next one
    is tried. Returns None once the chain is exhausted.
    """
    for name, attempt in strategies:
        try:
            result = await attempt()
        except Exception as e:
            logger.warning(f"{label}: strategy '{name}' failed: {e}")
            continue
        if result is not None:
            logger.info(f"{label}: strategy '{name}' succeeded")
            return result
        logger.warning(f"{label}: strategy '{name}' returned no result")
    logger.error(f"{label}: all {len(strategies)} strategies failed")
    return None
