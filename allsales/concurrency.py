"""
Bounded parallel processing for per-app work items.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger("main")

T = TypeVar("T")
R = TypeVar("R")


def process_with_concurrency(
    items: Sequence[T],
    fn: Callable[[T], R],
    limit: int = 5,
    label: str = "item",
) -> List[Optional[R]]:
    """
    Apply `fn` to every item with at most `limit` calls in flight.

    Results come back in input order. An item whose call raised yields None and
    the error is logged; the remaining items keep going.
    """
    if not items:
        return []

    limit = max(1, int(limit))
    results: List[Optional[R]] = [None] * len(items)

    with ThreadPoolExecutor(max_workers=min(limit, len(items)), thread_name_prefix=f"allsales-{label}") as executor:
        futures = [executor.submit(fn, item) for item in items]
        for index, future in enumerate(futures):
            try:
                results[index] = future.result()
            except Exception as e:
                logger.error(f"Error processing {label} {items[index]!r}: {e}", exc_info=True)
    return results
