"""
Chain-tip-driven comparison scheduler.

Runs one comparison pass per checkpoint as the chain advances. At most one
pass is in flight; head-change triggers that arrive while a pass is running
collapse into a single pending trigger.
"""

import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

from apicompare.compare.registry import OperationRegistry
from apicompare.domain.chain import (
    DEFAULT_MESSAGE_CONFIDENCE,
    EMPTY_TSK,
    HEAD_CHANGE_APPLY,
    HEAD_CHANGE_CURRENT,
    HeadChange,
    TipSet,
)
from apicompare.exceptions import SetupError, SubscriptionError
from apicompare.monitoring.comparison import (
    ComparisonLogger,
    ComparisonMetricsPublisher,
    ComparisonOutcome,
    PassSummary,
)
from apicompare.scheduler.data_provider import DataProvider
from apicompare.utils.logger import get_logger

logger = get_logger(__name__)

# How long the main loop blocks on the trigger queue before re-checking stop
TRIGGER_WAIT_SECONDS = 0.5


class ManagerState(Enum):
    INITIALIZING = "initializing"
    SYNCING = "waiting_for_event_feed_sync"
    IDLE = "idle"
    COMPARING = "comparing_checkpoint"
    STOPPED = "stopped"


class CompareManager:
    """
    Decides when a comparison pass runs and runs it.

    A pass locates the checkpoint on both nodes, rebuilds the fixture data,
    then runs every registered operation concurrently and logs one outcome
    per operation.
    """

    def __init__(
        self,
        reference: Any,
        candidate: Any,
        data_provider: DataProvider,
        registry: OperationRegistry,
        feed: Any,
        current: TipSet,
        confidence: int = DEFAULT_MESSAGE_CONFIDENCE,
        stop_event: Optional[threading.Event] = None,
        trigger_capacity: int = 1,
        operation_workers: Optional[int] = None,
        comparison_logger: Optional[ComparisonLogger] = None,
        metrics: Optional[ComparisonMetricsPublisher] = None,
    ):
        """
        Args:
            reference: Reference RpcClient
            candidate: Candidate RpcClient
            data_provider: Fixture data owner, reset at the start of each pass
            registry: Operations to run each pass
            feed: Head-change feed exposing subscribe()
            current: Starting checkpoint
            confidence: Epochs to stay behind the head
            stop_event: Root cancellation signal
            trigger_capacity: Pending triggers kept while a pass runs
            operation_workers: Thread count for a pass (defaults to one per operation)
            comparison_logger: Outcome/summary sink
            metrics: Optional CloudWatch publisher
        """
        if trigger_capacity < 1:
            raise ValueError(f"trigger_capacity must be >= 1, got {trigger_capacity}")

        self.reference = reference
        self.candidate = candidate
        self.data_provider = data_provider
        self.registry = registry
        self.feed = feed
        self.confidence = confidence
        self.stop_event = stop_event or threading.Event()
        self.operation_workers = operation_workers
        self.comparison_logger = comparison_logger or ComparisonLogger()
        self.metrics = metrics

        self._current = current
        self._lock = threading.Lock()
        self._triggers: "queue.Queue[None]" = queue.Queue(maxsize=trigger_capacity)
        self._listener: Optional[threading.Thread] = None
        self._listener_error: Optional[BaseException] = None

        self.state = ManagerState.INITIALIZING
        self.passes_completed = 0
        self.triggers_dropped = 0

    @property
    def current(self) -> TipSet:
        with self._lock:
            return self._current

    def _set_current(self, tipset: TipSet) -> None:
        with self._lock:
            self._current = tipset

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """
        Sync with the head-change feed, run the initial pass, then run one
        pass per trigger until stopped. Blocks the calling thread.

        Raises:
            SubscriptionError: If the feed cannot be established or synced,
                or the listener dies
        """
        self.state = ManagerState.SYNCING
        notifications = self._sync_feed()

        self._listener = threading.Thread(
            target=self._listen, args=(notifications,), name="head-listener", daemon=True
        )
        self._listener.start()

        self.compare_at(max(self.current.height - self.confidence, 0))

        while not self.stop_event.is_set():
            try:
                self._triggers.get(timeout=TRIGGER_WAIT_SECONDS)
            except queue.Empty:
                continue
            if self.stop_event.is_set():
                break
            self.compare_at(self.current.height + 1)

        self.state = ManagerState.STOPPED
        logger.warning("Comparison loop stopped", operation="compare_manager")

        if self._listener_error is not None:
            raise SubscriptionError(
                f"head-change listener failed: {self._listener_error}"
            ) from self._listener_error

    def stop(self) -> None:
        self.stop_event.set()

    def trigger(self) -> bool:
        """
        Request another pass. Returns False if one is already pending.
        """
        try:
            self._triggers.put_nowait(None)
            return True
        except queue.Full:
            self.triggers_dropped += 1
            logger.debug("Pass already pending, trigger dropped", operation="compare_manager")
            return False

    # ------------------------------------------------------------------ #
    # Head-change feed
    # ------------------------------------------------------------------ #

    def _sync_feed(self) -> Iterator[List[HeadChange]]:
        notifications = self.feed.subscribe()

        first = next(notifications, None)
        if first is None:
            raise SubscriptionError("chain notify closed before the first notification")
        if len(first) != 1:
            raise SubscriptionError(f"expect hccurrent length 1 but got {len(first)}")
        if first[0].type != HEAD_CHANGE_CURRENT:
            raise SubscriptionError(f"expect hccurrent event but got {first[0].type}")

        self.state = ManagerState.IDLE
        logger.info(
            "Head-change feed synced",
            operation="chain_notify",
            context={"head": first[0].tipset.height},
        )
        return notifications

    def _listen(self, notifications: Iterator[List[HeadChange]]) -> None:
        try:
            for batch in notifications:
                if self.stop_event.is_set():
                    break
                self._on_notification(batch)
        except Exception as e:
            self._listener_error = e
            logger.error("Head-change listener failed", operation="chain_notify", error=str(e))
            self.stop_event.set()

    def _on_notification(self, batch: List[HeadChange]) -> None:
        applied = [change.tipset for change in batch if change.type == HEAD_CHANGE_APPLY]
        if not applied:
            return
        if applied[0].height > self.current.height + self.confidence:
            self.trigger()

    # ------------------------------------------------------------------ #
    # Passes
    # ------------------------------------------------------------------ #

    def find_checkpoint_by_height(self, height: int) -> TipSet:
        """
        Locate the checkpoint at or after `height` on both nodes.

        Raises:
            SetupError: If a lookup fails or the nodes disagree
        """
        try:
            reference_ts = TipSet.from_json(
                self.reference.call("ChainGetTipSetAfterHeight", height, EMPTY_TSK)
            )
            candidate_ts = TipSet.from_json(
                self.candidate.call("ChainGetTipSetAfterHeight", height, EMPTY_TSK)
            )
        except (ValueError, RuntimeError) as e:
            raise SetupError(f"lookup of height {height} failed: {e}") from e

        if reference_ts.height != candidate_ts.height:
            raise SetupError(
                f"height not match {reference_ts.height} != {candidate_ts.height}"
            )
        if reference_ts.key != candidate_ts.key:
            raise SetupError(f"key not match {reference_ts.key} != {candidate_ts.key}")

        return reference_ts

    def compare_at(self, height: int) -> Optional[PassSummary]:
        """
        Run a pass at the checkpoint found for `height`.

        Setup failures are logged and abandon the pass; None is returned.
        """
        try:
            tipset = self.find_checkpoint_by_height(height)
        except SetupError as e:
            logger.error(
                f"found ts failed {height}", operation="compare_pass", error=str(e)
            )
            return None

        self._set_current(tipset)
        try:
            return self.compare_all()
        except SetupError as e:
            logger.error(
                "compare api error",
                operation="compare_pass",
                context={"height": tipset.height},
                error=str(e),
            )
            return None

    def compare_all(self) -> PassSummary:
        """
        Run every registered operation against the current checkpoint.

        Raises:
            SetupError: If the fixture data cannot be built
        """
        tipset = self.current
        self.state = ManagerState.COMPARING
        try:
            self.data_provider.reset(tipset)
            operations = self.registry.all()
            logger.info(
                f"start compare {len(operations)} methods, height {tipset.height}",
                operation="compare_pass",
            )

            summary = PassSummary(height=tipset.height)
            start = time.time()
            workers = self.operation_workers or max(len(operations), 1)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="compare-op") as pool:
                futures = [
                    pool.submit(self._run_operation, name, operation, tipset.height)
                    for name, operation in operations.items()
                ]
                for future in as_completed(futures):
                    summary.record(future.result())
            summary.processing_duration_ms = (time.time() - start) * 1000

            self.comparison_logger.log_summary(summary)
            if self.metrics is not None:
                self.metrics.publish_pass_summary(summary)

            with self._lock:
                self.passes_completed += 1
            return summary
        finally:
            self.state = ManagerState.IDLE

    def _run_operation(
        self, name: str, operation: Callable[[], Any], height: int
    ) -> ComparisonOutcome:
        start = time.time()
        error: Optional[BaseException] = None
        try:
            operation()
        except Exception as e:
            error = e

        outcome = ComparisonOutcome.from_error(name, height, error, (time.time() - start) * 1000)
        self.comparison_logger.log_outcome(outcome)
        return outcome
