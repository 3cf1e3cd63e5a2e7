"""
Exception hierarchy for the comparison engine.

Operation-level errors (everything under CompareError except FatalError) are
caught per operation, logged and counted. FatalError terminates the process.
"""

from typing import Any, List, Optional


class CompareError(Exception):
    """Base exception for all comparison failures."""

    pass


class TransportError(CompareError):
    """
    Raised when exactly one side's remote call failed.

    Attributes:
        side: "reference" or "candidate"
        method: RPC method name
        cause: The underlying exception
    """

    def __init__(self, side: str, method: str, cause: BaseException) -> None:
        super().__init__(f"{side} call {method} failed: {cause}")
        self.side = side
        self.method = method
        self.cause = cause


class BothSidesError(CompareError):
    """Raised when the reference and the candidate both returned an error."""

    def __init__(
        self, method: str, reference_error: BaseException, candidate_error: BaseException
    ) -> None:
        super().__init__(
            f"reference and candidate both returned error for {method}: "
            f"{reference_error}, {candidate_error}"
        )
        self.method = method
        self.reference_error = reference_error
        self.candidate_error = candidate_error


class UnexpectedSuccessError(CompareError):
    """
    Raised when a request expected both sides to reject it but one or both accepted.

    The error of the side that did reject, if any, is kept for the report.
    """

    def __init__(self, method: str, reference_error: Any = None, candidate_error: Any = None):
        super().__init__(
            f"expected {method} to fail on both sides, "
            f"reference error: {reference_error}, candidate error: {candidate_error}"
        )
        self.method = method
        self.reference_error = reference_error
        self.candidate_error = candidate_error


class DivergenceError(CompareError):
    """
    Raised when both calls succeeded but the results are not equivalent.

    Attributes:
        details: Path-based list of differences ("height: 100 != 101")
        reference_repr: Canonical text form of the reference result
        candidate_repr: Canonical text form of the candidate result
    """

    def __init__(
        self,
        message: str,
        details: Optional[List[str]] = None,
        reference_repr: Optional[str] = None,
        candidate_repr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.details = details or []
        self.reference_repr = reference_repr
        self.candidate_repr = candidate_repr


class UnknownMethodError(CompareError):
    """Raised when a target does not expose the requested method."""

    pass


class DispatchCancelled(CompareError):
    """Raised when the stop signal fired before a request was admitted."""

    pass


class SetupError(CompareError):
    """
    Raised when a pass cannot be prepared.

    Checkpoint lookup disagreement, empty checkpoint or missing fixture data.
    Aborts only the current pass.
    """

    pass


class FatalError(Exception):
    """Raised when the engine cannot proceed at all."""

    pass


class SubscriptionError(FatalError):
    """Raised when the head-change feed cannot be established or synchronized."""

    pass
