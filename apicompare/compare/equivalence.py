"""
Structural equivalence between reference and candidate results.

Two values are equivalent when they carry the same content, even if their
concrete classes differ: records are matched field-by-field by name,
sequences element-wise, mappings by key. Types that cannot be walked
structurally are compared through their canonical JSON serialization.
"""

import dataclasses
import json
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, Type

from apicompare.exceptions import DivergenceError

_BYTES_TYPES = (bytes, bytearray, memoryview)
_NUMBER_TYPES = (int, float, Decimal)

# Types that always compare by canonical serialization
_CANONICAL_TYPES: Set[Type[Any]] = set()

_KIND_NONE = "none"
_KIND_BYTES = "bytes"
_KIND_BOOL = "bool"
_KIND_NUMBER = "number"
_KIND_STRING = "string"
_KIND_MAPPING = "mapping"
_KIND_SEQUENCE = "sequence"
_KIND_SET = "set"
_KIND_RECORD = "record"
_KIND_CANONICAL = "canonical"
_KIND_SCALAR = "scalar"


def register_canonical(cls: Type[Any]) -> Type[Any]:
    """
    Mark a type as compared by canonical serialization only.

    Usable as a class decorator.
    """
    _CANONICAL_TYPES.add(cls)
    return cls


def unregister_canonical(cls: Type[Any]) -> None:
    _CANONICAL_TYPES.discard(cls)


def _record_fields(value: Any) -> Optional[Dict[str, Any]]:
    """Return the named fields of a record value, or None if it is not a record."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}

    if isinstance(value, tuple) and hasattr(value, "_fields"):
        return dict(zip(value._fields, value))

    if hasattr(value, "__dict__") and not callable(value):
        # Private attributes included; opaque state belongs in register_canonical
        return dict(vars(value))

    slots = getattr(type(value), "__slots__", None)
    if slots:
        if isinstance(slots, str):
            slots = (slots,)
        return {name: getattr(value, name) for name in slots if hasattr(value, name)}

    return None


def _kind(value: Any) -> str:
    if value is None:
        return _KIND_NONE
    if isinstance(value, _BYTES_TYPES):
        return _KIND_BYTES
    if type(value) in _CANONICAL_TYPES or hasattr(value, "__canonical__"):
        return _KIND_CANONICAL
    if isinstance(value, bool):
        return _KIND_BOOL
    if isinstance(value, Enum):
        return _KIND_SCALAR
    if isinstance(value, _NUMBER_TYPES):
        return _KIND_NUMBER
    if isinstance(value, str):
        return _KIND_STRING
    if isinstance(value, dict):
        return _KIND_MAPPING
    if isinstance(value, (set, frozenset)):
        return _KIND_SET
    if isinstance(value, tuple) and hasattr(value, "_fields"):
        return _KIND_RECORD
    if isinstance(value, (list, tuple)):
        return _KIND_SEQUENCE
    if _record_fields(value) is not None:
        return _KIND_RECORD
    if type(value).__eq__ is not object.__eq__:
        return _KIND_SCALAR
    return _KIND_CANONICAL


def _equal(a: Any, b: Any, active: Set[Tuple[int, int]]) -> bool:
    kind_a = _kind(a)
    kind_b = _kind(b)

    if kind_a == _KIND_CANONICAL or kind_b == _KIND_CANONICAL:
        return canonical_json_equal(a, b)

    if kind_a != kind_b:
        return False

    if kind_a == _KIND_NONE:
        return True

    if kind_a == _KIND_BYTES:
        return bytes(a) == bytes(b)

    if kind_a in (_KIND_BOOL, _KIND_NUMBER, _KIND_STRING, _KIND_SET, _KIND_SCALAR):
        try:
            return bool(a == b)
        except Exception:
            return False

    pair = (id(a), id(b))
    if pair in active:
        # Cycle: refuse rather than recurse forever
        return False
    active.add(pair)
    try:
        if kind_a == _KIND_SEQUENCE:
            if len(a) != len(b):
                return False
            return all(_equal(x, y, active) for x, y in zip(a, b))

        if kind_a == _KIND_MAPPING:
            if set(a.keys()) != set(b.keys()):
                return False
            return all(_equal(a[k], b[k], active) for k in a)

        # Records
        fields_a = _record_fields(a)
        fields_b = _record_fields(b)
        if fields_a is None or fields_b is None:
            return canonical_json_equal(a, b)
        if set(fields_a) != set(fields_b):
            return False
        return all(_equal(fields_a[name], fields_b[name], active) for name in fields_a)
    finally:
        active.discard(pair)


def equivalent(a: Any, b: Any) -> bool:
    """
    Decide whether two values mean the same thing.

    Never raises: kind mismatches, missing fields and unserializable values
    all yield False.
    """
    try:
        return _equal(a, b, set())
    except Exception:
        return False


def _to_canonical(value: Any) -> Any:
    """Convert a value into plain JSON-compatible data with stable ordering."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value
    if isinstance(value, Decimal):
        # Exact digits, never a binary float
        return str(value)
    if isinstance(value, _BYTES_TYPES):
        return "0x" + bytes(value).hex()
    if isinstance(value, Enum):
        return _to_canonical(value.value)
    canonical = getattr(value, "__canonical__", None)
    if callable(canonical):
        return _to_canonical(canonical())
    to_json = getattr(value, "to_json", None)
    if callable(to_json):
        return _to_canonical(to_json())
    if isinstance(value, dict):
        return {str(k): _to_canonical(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        items = [_to_canonical(v) for v in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, default=str))
    if isinstance(value, tuple) and hasattr(value, "_fields"):
        return {k: _to_canonical(v) for k, v in zip(value._fields, value)}
    if isinstance(value, (list, tuple)):
        return [_to_canonical(v) for v in value]
    fields = _record_fields(value)
    if fields is not None:
        return {k: _to_canonical(v) for k, v in fields.items()}
    raise TypeError(f"Object of type {type(value).__name__} has no canonical form")


def canonical_json(value: Any) -> str:
    """
    Serialize a value to deterministic JSON text.

    Keys are sorted, separators are compact and bytes render as 0x-hex.

    Raises:
        TypeError: If the value contains something that cannot be serialized
        RecursionError: If the value contains a cycle
    """
    return json.dumps(
        _to_canonical(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def canonical_json_equal(a: Any, b: Any) -> bool:
    """Compare the canonical serializations of two values byte-for-byte."""
    try:
        return canonical_json(a) == canonical_json(b)
    except (TypeError, ValueError, RecursionError):
        return False


def _safe_canonical(value: Any) -> str:
    try:
        return canonical_json(value)
    except (TypeError, ValueError, RecursionError):
        return repr(value)


def _short(value: Any, max_length: int = 120) -> str:
    text = _safe_canonical(value)
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


def _walk_differences(a: Any, b: Any, path: str, out: List[str], limit: int) -> None:
    if len(out) >= limit:
        return

    label = path or "value"
    kind_a = _kind(a)
    kind_b = _kind(b)

    if kind_a != kind_b or kind_a in (_KIND_CANONICAL, _KIND_BYTES, _KIND_SET, _KIND_SCALAR):
        if not equivalent(a, b):
            out.append(f"{label}: {_short(a)} != {_short(b)}")
        return

    if kind_a == _KIND_SEQUENCE:
        if len(a) != len(b):
            out.append(f"{label}.count: {len(a)} != {len(b)}")
        for index, (x, y) in enumerate(zip(a, b)):
            _walk_differences(x, y, f"{path}[{index}]", out, limit)
        return

    if kind_a in (_KIND_MAPPING, _KIND_RECORD):
        fields_a = dict(a) if kind_a == _KIND_MAPPING else (_record_fields(a) or {})
        fields_b = dict(b) if kind_a == _KIND_MAPPING else (_record_fields(b) or {})
        for key in sorted(set(fields_a) | set(fields_b), key=str):
            child = f"{path}.{key}" if path else str(key)
            if key not in fields_b:
                out.append(f"{child}: only in reference")
            elif key not in fields_a:
                out.append(f"{child}: only in candidate")
            else:
                _walk_differences(fields_a[key], fields_b[key], child, out, limit)
            if len(out) >= limit:
                return
        return

    if not equivalent(a, b):
        out.append(f"{label}: {_short(a)} != {_short(b)}")


def describe_divergence(a: Any, b: Any, limit: int = 10) -> List[str]:
    """
    List the differences between two values as "path: reference != candidate".

    Returns an empty list when the values are equivalent.
    """
    out: List[str] = []
    try:
        _walk_differences(a, b, "", out, limit)
    except RecursionError:
        out.append("value: structures too deep to compare")
    if not out and not equivalent(a, b):
        out.append(f"value: {_short(a)} != {_short(b)}")
    return out[:limit]


def check_equivalent(reference: Any, candidate: Any) -> None:
    """
    Raise DivergenceError unless the two results are structurally equivalent.
    """
    if equivalent(reference, candidate):
        return

    details = describe_divergence(reference, candidate)
    raise DivergenceError(
        f"not match: {'; '.join(details)}",
        details=details,
        reference_repr=_safe_canonical(reference),
        candidate_repr=_safe_canonical(candidate),
    )


def check_canonical_json(reference: Any, candidate: Any) -> None:
    """
    Raise DivergenceError unless both results serialize to identical canonical JSON.
    """
    if canonical_json_equal(reference, candidate):
        return

    reference_repr = _safe_canonical(reference)
    candidate_repr = _safe_canonical(candidate)
    raise DivergenceError(
        f"json marshal result not match {reference_repr} != {candidate_repr}",
        details=describe_divergence(reference, candidate),
        reference_repr=reference_repr,
        candidate_repr=candidate_repr,
    )
