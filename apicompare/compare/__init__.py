"""Comparison module - equivalence checking, checkers and the operation registry."""

from .equivalence import (
    canonical_json,
    canonical_json_equal,
    check_canonical_json,
    check_equivalent,
    describe_divergence,
    equivalent,
    register_canonical,
    unregister_canonical,
)
from .registry import OperationRegistry

__all__ = [
    "canonical_json",
    "canonical_json_equal",
    "check_canonical_json",
    "check_equivalent",
    "describe_divergence",
    "equivalent",
    "register_canonical",
    "unregister_canonical",
    "OperationRegistry",
]
