"""
Chain domain model.

Checkpoints (tipsets), their keys, addresses and messages as exchanged with
Filecoin full-node JSON-RPC endpoints.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

HEAD_CHANGE_CURRENT = "current"
HEAD_CHANGE_APPLY = "apply"
HEAD_CHANGE_REVERT = "revert"

# Lookback value meaning "search the whole chain" for StateSearchMsg/StateWaitMsg
LOOKBACK_NO_LIMIT = -1
DEFAULT_MESSAGE_CONFIDENCE = 5


@dataclass(frozen=True)
class Cid:
    """Content identifier, kept in its string (multibase) form."""

    value: str

    @classmethod
    def from_json(cls, data: Any) -> "Cid":
        """Decode `{"/": "bafy..."}` or a bare string."""
        if isinstance(data, dict):
            if "/" not in data:
                raise ValueError(f"Invalid CID object: {data}")
            return cls(data["/"])
        if isinstance(data, str) and data:
            return cls(data)
        raise ValueError(f"Invalid CID: {data!r}")

    def to_json(self) -> Dict[str, str]:
        return {"/": self.value}

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TipSetKey:
    """Ordered list of block CIDs identifying a tipset."""

    cids: Tuple[Cid, ...] = ()

    @classmethod
    def from_json(cls, data: Optional[List[Any]]) -> "TipSetKey":
        if not data:
            return EMPTY_TSK
        return cls(tuple(Cid.from_json(c) for c in data))

    def is_empty(self) -> bool:
        return len(self.cids) == 0

    def to_json(self) -> List[Dict[str, str]]:
        return [c.to_json() for c in self.cids]

    def __str__(self) -> str:
        return "{" + ",".join(str(c) for c in self.cids) + "}"


EMPTY_TSK = TipSetKey()


@dataclass(frozen=True)
class TipSet:
    """
    A checkpoint in the chain.

    Attributes:
        height: Chain epoch of the tipset
        cids: Block CIDs (the tipset key, in order)
        blocks: Raw block headers as returned by the node
        parents: Key of the parent tipset
    """

    height: int
    cids: Tuple[Cid, ...]
    blocks: Tuple[Dict[str, Any], ...] = field(default=(), compare=False, repr=False)
    parents: TipSetKey = EMPTY_TSK

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TipSet":
        """
        Create TipSet from a ChainHead / ChainGetTipSet* response.

        Raises:
            ValueError: If the payload is not a tipset
        """
        if not isinstance(data, dict) or "Height" not in data:
            raise ValueError(f"Not a tipset: {data!r}")

        blocks = tuple(data.get("Blocks") or ())
        parents = EMPTY_TSK
        if blocks:
            parents = TipSetKey.from_json(blocks[0].get("Parents"))

        return cls(
            height=int(data["Height"]),
            cids=tuple(Cid.from_json(c) for c in data.get("Cids") or ()),
            blocks=blocks,
            parents=parents,
        )

    @property
    def key(self) -> TipSetKey:
        return TipSetKey(self.cids)

    def __len__(self) -> int:
        return len(self.cids)


@dataclass(frozen=True)
class HeadChange:
    """One entry of a head-change notification."""

    type: str
    tipset: TipSet


@dataclass(frozen=True)
class Address:
    """
    Filecoin address in its string form (e.g. "f01000", "t3abc...").

    The second character encodes the protocol: 0 ID, 1 secp256k1,
    2 actor, 3 BLS, 4 delegated.
    """

    value: str

    PROTOCOL_ID = 0

    @property
    def protocol(self) -> int:
        if len(self.value) < 2 or not self.value[1].isdigit():
            raise ValueError(f"Invalid address: {self.value}")
        return int(self.value[1])

    def is_id(self) -> bool:
        return self.protocol == self.PROTOCOL_ID

    @property
    def actor_id(self) -> int:
        if not self.is_id():
            raise ValueError(f"Not an ID address: {self.value}")
        return int(self.value[2:])

    def to_json(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


DEFAULT_MINER = Address("t01000")


@dataclass(frozen=True)
class Message:
    """An unsigned chain message."""

    version: int
    to: Address
    from_: Address
    nonce: int
    value: str
    gas_limit: int
    gas_fee_cap: str
    gas_premium: str
    method: int
    params: Optional[str] = None
    cid: Optional[Cid] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            version=int(data.get("Version", 0)),
            to=Address(data["To"]),
            from_=Address(data["From"]),
            nonce=int(data.get("Nonce", 0)),
            value=str(data.get("Value", "0")),
            gas_limit=int(data.get("GasLimit", 0)),
            gas_fee_cap=str(data.get("GasFeeCap", "0")),
            gas_premium=str(data.get("GasPremium", "0")),
            method=int(data.get("Method", 0)),
            params=data.get("Params"),
            cid=Cid.from_json(data["CID"]) if data.get("CID") else None,
        )

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "Version": self.version,
            "To": self.to.value,
            "From": self.from_.value,
            "Nonce": self.nonce,
            "Value": self.value,
            "GasLimit": self.gas_limit,
            "GasFeeCap": self.gas_fee_cap,
            "GasPremium": self.gas_premium,
            "Method": self.method,
            "Params": self.params,
        }
        if self.cid is not None:
            payload["CID"] = self.cid.to_json()
        return payload


@dataclass(frozen=True)
class MessageMatch:
    """Filter for StateListMessages."""

    from_: Optional[Address] = None
    to: Optional[Address] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "From": self.from_.value if self.from_ else "",
            "To": self.to.value if self.to else "",
        }
