"""Dispatch module - bounded-concurrency execution of comparison requests."""

from .convert import ArgumentConverter
from .dispatcher import Dispatcher
from .request import CallContext, CallResult, ComparisonRequest, RequestState

__all__ = [
    "ArgumentConverter",
    "Dispatcher",
    "CallContext",
    "CallResult",
    "ComparisonRequest",
    "RequestState",
]
