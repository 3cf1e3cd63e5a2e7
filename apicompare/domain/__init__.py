"""Domain models - chain and eth value kinds."""

from .chain import EMPTY_TSK, Address, Cid, HeadChange, Message, MessageMatch, TipSet, TipSetKey
from .eth import EthAddress, EthBytes, EthCall, EthHash, EthUint64

__all__ = [
    "EMPTY_TSK",
    "Address",
    "Cid",
    "HeadChange",
    "Message",
    "MessageMatch",
    "TipSet",
    "TipSetKey",
    "EthAddress",
    "EthBytes",
    "EthCall",
    "EthHash",
    "EthUint64",
]
