"""
Ethereum-compatible value kinds used by the Eth* JSON-RPC methods.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from apicompare.domain.chain import Address

BLOCK_PARAM_EARLIEST = "earliest"
BLOCK_PARAM_PENDING = "pending"
BLOCK_PARAM_LATEST = "latest"

ETH_HASH_LENGTH = 32
ETH_ADDRESS_LENGTH = 20


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def _unhex(text: str) -> bytes:
    if text.startswith(("0x", "0X")):
        text = text[2:]
    if len(text) % 2:
        text = "0" + text
    return bytes.fromhex(text)


@dataclass(frozen=True)
class EthUint64:
    """Unsigned integer encoded as a 0x-prefixed hex quantity."""

    value: int

    def to_json(self) -> str:
        return hex(self.value)

    @classmethod
    def from_json(cls, data: Any) -> "EthUint64":
        if isinstance(data, int):
            return cls(data)
        return cls(int(data, 16))


@dataclass(frozen=True)
class EthHash:
    """32-byte hash (block or transaction)."""

    data: bytes = bytes(ETH_HASH_LENGTH)

    def __post_init__(self) -> None:
        if len(self.data) != ETH_HASH_LENGTH:
            raise ValueError(f"EthHash must be {ETH_HASH_LENGTH} bytes, got {len(self.data)}")

    @classmethod
    def from_hex(cls, text: str) -> "EthHash":
        return cls(_unhex(text))

    def to_json(self) -> str:
        return _hex(self.data)


EMPTY_ETH_HASH = EthHash()


@dataclass(frozen=True)
class EthAddress:
    """20-byte Ethereum address."""

    data: bytes = bytes(ETH_ADDRESS_LENGTH)

    def __post_init__(self) -> None:
        if len(self.data) != ETH_ADDRESS_LENGTH:
            raise ValueError(
                f"EthAddress must be {ETH_ADDRESS_LENGTH} bytes, got {len(self.data)}"
            )

    @classmethod
    def from_hex(cls, text: str) -> "EthAddress":
        return cls(_unhex(text))

    @classmethod
    def from_filecoin_address(cls, address: Address) -> "EthAddress":
        """
        Masked-ID form of an ID address: 0xff, eleven zero bytes, then the
        actor id as a big-endian uint64.

        Raises:
            ValueError: If the address is not an ID address
        """
        actor_id = address.actor_id
        return cls(b"\xff" + bytes(11) + actor_id.to_bytes(8, "big"))

    def to_json(self) -> str:
        return _hex(self.data)


@dataclass(frozen=True)
class EthBytes:
    """Arbitrary byte string encoded as 0x-prefixed hex."""

    data: bytes = b""

    def to_json(self) -> str:
        return _hex(self.data)


@dataclass(frozen=True)
class EthCall:
    """Call descriptor for EthCall / EthEstimateGas."""

    from_: Optional[EthAddress] = None
    to: Optional[EthAddress] = None
    gas: int = 0
    gas_price: int = 0
    value: int = 0
    data: bytes = b""

    def to_json(self) -> Dict[str, Any]:
        return {
            "from": self.from_.to_json() if self.from_ else None,
            "to": self.to.to_json() if self.to else None,
            "gas": hex(self.gas),
            "gasPrice": hex(self.gas_price),
            "value": hex(self.value),
            "data": _hex(self.data),
        }
