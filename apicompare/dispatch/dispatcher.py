"""
Bounded-concurrency dispatcher.

Runs each ComparisonRequest against the reference and the candidate in
parallel and reduces the two outcomes to success or a CompareError.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional, Tuple

from apicompare.compare.equivalence import check_equivalent, describe_divergence
from apicompare.dispatch.convert import ArgumentConverter
from apicompare.dispatch.request import (
    CallResult,
    ComparisonRequest,
    RequestState,
    ResultChecker,
)
from apicompare.exceptions import (
    BothSidesError,
    CompareError,
    DispatchCancelled,
    DivergenceError,
    TransportError,
    UnexpectedSuccessError,
)
from apicompare.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 5


class Dispatcher:
    """
    Executes comparison requests with at most `concurrency` running at once.

    Requests beyond the cap wait in the admission executor's queue. Each
    admitted request fans out to two calls on a separate call pool, so a
    running request never waits for a slot held by another request.
    """

    def __init__(
        self,
        reference: Any,
        candidate: Any,
        concurrency: int = DEFAULT_CONCURRENCY,
        converter: Optional[ArgumentConverter] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            reference: Target exposing invoke(method, args) for the trusted node
            candidate: Target exposing invoke(method, args) for the node under test
            concurrency: Max requests running at once (<= 0 falls back to 5)
            converter: Candidate argument converter
            stop_event: Root cancellation signal
        """
        if concurrency <= 0:
            concurrency = DEFAULT_CONCURRENCY

        self.reference = reference
        self.candidate = candidate
        self.concurrency = concurrency
        self.converter = converter or ArgumentConverter()
        self.stop_event = stop_event or threading.Event()

        self._admission = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="dispatch"
        )
        self._calls = ThreadPoolExecutor(
            max_workers=concurrency * 2, thread_name_prefix="dispatch-call"
        )
        self._lock = threading.Lock()
        self.in_flight = 0
        self.peak_in_flight = 0

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def submit(self, request: ComparisonRequest) -> "Future[CallResult]":
        """
        Queue a request. The returned future resolves to a CallResult or
        raises a CompareError.
        """
        if self.stop_event.is_set():
            return self._cancelled(request)

        request.state = RequestState.QUEUED
        try:
            return self._admission.submit(self._run, request)
        except RuntimeError:
            # Executor already shut down
            return self._cancelled(request)

    def compare(
        self,
        method: str,
        *args: Any,
        checker: Optional[ResultChecker] = None,
        expect_error: bool = False,
    ) -> CallResult:
        """Submit a request and wait for its outcome."""
        request = ComparisonRequest(
            method=method, args=list(args), checker=checker, expect_error=expect_error
        )
        return self.submit(request).result()

    def close(self) -> None:
        self._admission.shutdown(wait=False, cancel_futures=True)
        self._calls.shutdown(wait=False)

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _cancelled(self, request: ComparisonRequest) -> "Future[CallResult]":
        request.state = RequestState.CANCELLED
        future: "Future[CallResult]" = Future()
        future.set_exception(DispatchCancelled(f"request {request.method} cancelled"))
        return future

    def _run(self, request: ComparisonRequest) -> CallResult:
        if self.stop_event.is_set():
            request.state = RequestState.CANCELLED
            raise DispatchCancelled(f"request {request.method} cancelled before admission")

        request.state = RequestState.RUNNING
        with self._lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

        start = time.time()
        logger.debug(f"start handler compare {request.method}", operation="dispatch")
        try:
            return self._call(request)
        finally:
            with self._lock:
                self.in_flight -= 1
            request.state = RequestState.COMPLETED
            logger.debug(
                f"end handler compare {request.method}",
                operation="dispatch",
                context={"duration_ms": round((time.time() - start) * 1000, 2)},
            )

    @staticmethod
    def _invoke(target: Any, method: str, args: Any) -> Tuple[Any, Optional[BaseException]]:
        try:
            return target.invoke(method, args), None
        except Exception as e:
            return None, e

    def _call(self, request: ComparisonRequest) -> CallResult:
        method = request.method
        candidate_args = self.converter.convert(request.args)

        reference_future = self._calls.submit(
            self._invoke, self.reference, method, list(request.args)
        )
        candidate_future = self._calls.submit(
            self._invoke, self.candidate, method, candidate_args
        )
        reference_result, reference_error = reference_future.result()
        candidate_result, candidate_error = candidate_future.result()

        result = CallResult(
            method=method,
            reference=reference_result,
            candidate=candidate_result,
            reference_error=reference_error,
            candidate_error=candidate_error,
        )

        if request.expect_error:
            if reference_error is None or candidate_error is None:
                raise UnexpectedSuccessError(method, reference_error, candidate_error)
            logger.debug(
                f"{method} rejected as expected",
                operation="dispatch",
                context={
                    "reference_error": str(reference_error),
                    "candidate_error": str(candidate_error),
                },
            )
            return result

        if reference_error is not None and candidate_error is not None:
            raise BothSidesError(method, reference_error, candidate_error)
        if reference_error is not None:
            raise TransportError("reference", method, reference_error)
        if candidate_error is not None:
            raise TransportError("candidate", method, candidate_error)

        self._check(request, reference_result, candidate_result)
        return result

    @staticmethod
    def _check(request: ComparisonRequest, reference: Any, candidate: Any) -> None:
        if request.checker is None:
            check_equivalent(reference, candidate)
            return

        try:
            verdict = request.checker(reference, candidate)
        except CompareError:
            raise
        except Exception as e:
            raise DivergenceError(f"result check for {request.method} failed: {e}") from e

        if verdict is False:
            details = describe_divergence(reference, candidate)
            raise DivergenceError(f"not match: {'; '.join(details)}", details=details)
