"""
Reusable result checkers.

Each checker takes (reference_result, candidate_result) as decoded from the
wire and raises DivergenceError when they do not agree. Factories return a
checker bound to their arguments.
"""

from typing import Any, Callable, Iterable, Optional

from apicompare.compare.equivalence import (
    canonical_json,
    canonical_json_equal,
    describe_divergence,
    equivalent,
)
from apicompare.exceptions import DivergenceError
from apicompare.utils.logger import get_logger

logger = get_logger(__name__)

Checker = Callable[[Any, Any], None]


def _mismatch(message: str, reference: Any, candidate: Any) -> DivergenceError:
    return DivergenceError(
        message,
        details=describe_divergence(reference, candidate),
        reference_repr=_safe_json(reference),
        candidate_repr=_safe_json(candidate),
    )


def _safe_json(value: Any) -> str:
    try:
        return canonical_json(value)
    except (TypeError, ValueError, RecursionError):
        return repr(value)


def result_check_with_equal(reference: Any, candidate: Any) -> None:
    """Structural equality, failing with both values in the message."""
    if not equivalent(reference, candidate):
        raise _mismatch(
            f"not match obj1 {_safe_json(reference)}, obj2 {_safe_json(candidate)}",
            reference,
            candidate,
        )


def _to_int(value: Any) -> Optional[int]:
    """Decode an integer sent as a JSON number, a decimal string or a 0x quantity."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text)
    raise ValueError(f"not an integer: {value!r}")


def within_tolerance(max_delta: int) -> Checker:
    """
    Integers may differ by at most `max_delta`.

    Used for values that move with each node's sync position (EthBlockNumber).
    """

    def check(reference: Any, candidate: Any) -> None:
        a, b = _to_int(reference), _to_int(candidate)
        if a is None or b is None:
            if a is b:
                return
            raise _mismatch(f"not match {a} != {b}", reference, candidate)
        if abs(a - b) > max_delta:
            raise _mismatch(f"not match {a} != {b}, may sync slow", reference, candidate)

    return check


def _cid_strings(values: Optional[Iterable[Any]]) -> list:
    out = []
    for value in values or ():
        out.append(value.get("/") if isinstance(value, dict) else value)
    return out


def cids_subset(field: str = "Cids") -> Checker:
    """Every CID the candidate lists under `field` must also be listed by the reference."""

    def check(reference: Any, candidate: Any) -> None:
        known = set(_cid_strings((reference or {}).get(field)))
        for cid in _cid_strings((candidate or {}).get(field)):
            if cid not in known:
                raise _mismatch(
                    f"not match {_safe_json(reference)} != {_safe_json(candidate)}",
                    reference,
                    candidate,
                )

    return check


def tipset_equals(reference: Any, candidate: Any) -> None:
    """Tipsets match on height and on the ordered list of block CIDs."""
    if reference is None and candidate is None:
        return
    if reference is None or candidate is None:
        raise _mismatch(
            f"one is nil {reference is None} {candidate is None}", reference, candidate
        )

    if reference.get("Height") != candidate.get("Height"):
        raise _mismatch(
            f"height {reference.get('Height')} != {candidate.get('Height')}",
            reference,
            candidate,
        )

    ref_cids = _cid_strings(reference.get("Cids"))
    cand_cids = _cid_strings(candidate.get("Cids"))
    if len(ref_cids) != len(cand_cids):
        raise _mismatch(
            f"block length {len(ref_cids)} != {len(cand_cids)}", reference, candidate
        )
    for a, b in zip(ref_cids, cand_cids):
        if a != b:
            raise _mismatch(f"block {a} != {b}", reference, candidate)


def big_int_equal(reference: Any, candidate: Any) -> None:
    """
    Arbitrary-precision integers, encoded as decimal strings on the wire.

    null on both sides is a match.
    """
    try:
        a, b = _to_int(reference), _to_int(candidate)
    except ValueError as e:
        raise _mismatch(f"not match {reference} != {candidate}: {e}", reference, candidate) from e

    if a != b:
        raise _mismatch(f"not match {reference} != {candidate}", reference, candidate)


INVOC_RESULT_FIELDS = ("MsgRct", "GasCost", "ExecutionTrace")


def invoc_result_check(message_cid: Any) -> Checker:
    """
    StateCall / StateReplay results match on receipt, gas cost and
    execution trace, each compared by canonical JSON.
    """

    def check(reference: Any, candidate: Any) -> None:
        reference = reference or {}
        candidate = candidate or {}
        for field_name in INVOC_RESULT_FIELDS:
            a, b = reference.get(field_name), candidate.get(field_name)
            if not canonical_json_equal(a, b):
                raise _mismatch(
                    f"msg {message_cid}, {field_name}: {_safe_json(a)} != {_safe_json(b)}",
                    a,
                    b,
                )

    return check


def log_only(label: str) -> Checker:
    """Values that legitimately differ between nodes; both are logged, never compared."""

    def check(reference: Any, candidate: Any) -> None:
        logger.info(
            f"compare {label}: {reference} {candidate}",
            operation="log_only_check",
            context={"reference": reference, "candidate": candidate},
        )

    return check
