"""Request queues with an explicit retry re-admission policy.

``RetryPriorityQueue`` puts retried items back at the head so a flaky
request finishes soon instead of starving behind a long bulk load. A
request that keeps failing can therefore cut in line for as long as its
retry budget lasts. ``StrictFifoQueue`` sends retries to the tail instead.
"""

import abc
import logging
from collections import deque
from typing import Callable, Deque, Iterator, List, Optional

from tmdbgov.domain.models.requests import RequestDescriptor

logger = logging.getLogger(__name__)


class RequestQueue(abc.ABC):
    """Ordered pending descriptors, consumed by a single dispatch loop."""

    name = "abstract"

    def __init__(self) -> None:
        self._items: Deque[RequestDescriptor] = deque()

    def push(self, item: RequestDescriptor) -> None:
        """Admits a fresh item at the tail."""
        self._items.append(item)

    @abc.abstractmethod
    def push_retry(self, item: RequestDescriptor) -> None:
        """Re-admits an item whose attempt failed transiently."""
        pass

    def pop(self) -> Optional[RequestDescriptor]:
        return self._items.popleft() if self._items else None

    def remove_where(self, predicate: Callable[[RequestDescriptor], bool]) -> List[RequestDescriptor]:
        """Removes and returns every queued item matching ``predicate``, keeping order."""
        removed = [item for item in self._items if predicate(item)]
        if removed:
            self._items = deque(item for item in self._items if not predicate(item))
        return removed

    def drain(self) -> List[RequestDescriptor]:
        items = list(self._items)
        self._items.clear()
        return items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[RequestDescriptor]:
        return iter(list(self._items))


class RetryPriorityQueue(RequestQueue):
    """Retry-priority FIFO: fresh items in submission order, retries first."""

    name = "head"

    def push_retry(self, item: RequestDescriptor) -> None:
        self._items.appendleft(item)


class StrictFifoQueue(RequestQueue):
    """Plain FIFO: retries wait behind everything already queued."""

    name = "fifo"

    def push_retry(self, item: RequestDescriptor) -> None:
        self._items.append(item)


QUEUE_POLICIES = {
    RetryPriorityQueue.name: RetryPriorityQueue,
    StrictFifoQueue.name: StrictFifoQueue,
}


def create_queue(policy: str = RetryPriorityQueue.name) -> RequestQueue:
    """Builds a queue by policy name ('head' or 'fifo')."""
    try:
        return QUEUE_POLICIES[policy]()
    except KeyError:
        logger.warning(f"Unknown retry priority policy '{policy}', using '{RetryPriorityQueue.name}'")
        return RetryPriorityQueue()
