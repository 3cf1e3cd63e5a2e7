"""
Head-change feed built on ChainHead polling.

Yields the same notification shape a ChainNotify subscription produces: a
first batch holding exactly one "current" change, then one "apply" batch
each time the head advances.
"""

import threading
from typing import Iterator, List, Optional

from apicompare.api.rpc_client import RpcClient
from apicompare.domain.chain import HEAD_CHANGE_APPLY, HEAD_CHANGE_CURRENT, HeadChange, TipSet
from apicompare.exceptions import SubscriptionError
from apicompare.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class HeadChangeFeed:
    """Polls a node's ChainHead and turns height increases into notifications."""

    def __init__(
        self,
        client: RpcClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stop_event: Optional[threading.Event] = None,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.stop_event = stop_event or threading.Event()

    def _head(self) -> TipSet:
        return TipSet.from_json(self.client.call("ChainHead"))

    def subscribe(self) -> Iterator[List[HeadChange]]:
        """
        Start the feed.

        Raises:
            SubscriptionError: If the initial head cannot be read
        """
        try:
            head = self._head()
        except Exception as e:
            raise SubscriptionError(f"chain notify error: {e}") from e

        return self._iterate(head)

    def _iterate(self, head: TipSet) -> Iterator[List[HeadChange]]:
        yield [HeadChange(HEAD_CHANGE_CURRENT, head)]

        last = head
        while not self.stop_event.wait(self.poll_interval):
            try:
                current = self._head()
            except Exception as e:
                logger.warning(
                    "Failed to poll chain head",
                    operation="chain_notify",
                    context={"last_height": last.height},
                    error=str(e),
                )
                continue

            if current.height > last.height:
                last = current
                yield [HeadChange(HEAD_CHANGE_APPLY, current)]

        logger.info("Head-change feed stopped", operation="chain_notify")
