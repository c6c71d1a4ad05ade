"""
Bounded-parallel batch processing for Blocklift.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def process_batch(items: Sequence[T], batch_size: int, handler: Callable[[T], R],
                  delay: float = 0.2) -> List[R]:
    """
    Run handler over items, batch_size at a time, pausing between batches.

    Items within a batch run concurrently and must be independent. The first
    exception raised by a handler propagates once its batch has finished.

    Args:
        items: Work items
        batch_size: Maximum number of concurrent handler calls
        handler: Function applied to each item
        delay: Seconds to sleep between batches

    Returns:
        Handler results in item order
    """
    results: List[R] = []
    batch_size = max(1, batch_size)
    total_batches = (len(items) + batch_size - 1) // batch_size

    for number, start in enumerate(range(0, len(items), batch_size), 1):
        batch = items[start:start + batch_size]
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            results.extend(executor.map(handler, batch))
        logging.debug(f"Processed batch {number}/{total_batches} ({len(batch)} items)")
        if delay and start + batch_size < len(items):
            time.sleep(delay)

    return results
