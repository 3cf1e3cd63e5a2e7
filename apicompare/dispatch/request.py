"""
Comparison request types.

A ComparisonRequest is one unit of work for the Dispatcher: a method name,
its positional arguments (the first one being the CallContext), an optional
result checker and the expect-error flag.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

# Custom equivalence override: raise DivergenceError (or return False) on mismatch
ResultChecker = Callable[[Any, Any], Optional[bool]]


class RequestState(Enum):
    """Lifecycle of a request inside the Dispatcher."""

    SUBMITTED = "submitted"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CallContext:
    """
    Invocation context passed as the first argument of every request.

    Carries the root stop signal so operations and targets can observe
    cancellation. Never converted or sent over the wire.
    """

    def __init__(self, stop_event: Optional[threading.Event] = None):
        self.stop_event = stop_event or threading.Event()

    def done(self) -> bool:
        return self.stop_event.is_set()

    def cancel(self) -> None:
        self.stop_event.set()

    def __repr__(self) -> str:
        return f"CallContext(done={self.done()})"


@dataclass
class ComparisonRequest:
    """One comparison of a single method call on both targets."""

    method: str
    args: List[Any]
    checker: Optional[ResultChecker] = None
    expect_error: bool = False
    state: RequestState = field(default=RequestState.SUBMITTED, compare=False)


@dataclass
class CallResult:
    """Raw results of a completed request."""

    method: str
    reference: Any = None
    candidate: Any = None
    reference_error: Optional[BaseException] = None
    candidate_error: Optional[BaseException] = None
