"""
Operation registry.

Maps operation names to zero-argument callables. Each callable performs one
comparison and raises a CompareError on divergence.
"""

from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping

from apicompare.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_METHOD_PREFIX = "compare_"

Operation = Callable[[], Any]


class OperationRegistry:
    """
    Catalogue of named comparison operations.

    Built once at startup and only read afterwards, so it can be shared by
    concurrent passes.
    """

    def __init__(self) -> None:
        self._operations: Dict[str, Operation] = {}

    def register(self, name: str, operation: Operation) -> None:
        """
        Bind a name to an operation. Re-registering a name replaces it.

        Raises:
            TypeError: If operation is not callable
        """
        if not callable(operation):
            raise TypeError(f"Operation must be callable, got {type(operation)}")

        if name in self._operations:
            logger.debug(f"Replacing operation: {name}", operation="register")
        self._operations[name] = operation

    def build_from_methods(self, source: Any, prefix: str = DEFAULT_METHOD_PREFIX) -> int:
        """
        Register every method of `source` whose name starts with `prefix`.

        Each method is registered under its name with the prefix stripped.

        Args:
            source: Object exposing comparison methods
            prefix: Naming convention to match (e.g. "compare_" or "Compare")

        Returns:
            Number of operations registered
        """
        count = 0
        for attr_name in dir(source):
            if not attr_name.startswith(prefix) or attr_name == prefix:
                continue
            method = getattr(source, attr_name)
            if not callable(method):
                continue
            self.register(attr_name[len(prefix):], method)
            count += 1

        logger.info(
            f"Registered {count} operation(s) from {type(source).__name__}",
            operation="build_registry",
            context={"prefix": prefix, "count": count},
        )
        return count

    def all(self) -> Mapping[str, Operation]:
        """Read-only view of the catalogue, ordered by name."""
        return MappingProxyType(dict(sorted(self._operations.items())))

    def names(self) -> List[str]:
        return sorted(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations
