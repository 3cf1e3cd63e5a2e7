"""
Candidate argument conversion.

The two implementations accept the same domain values in related but not
identical wire shapes. Before a request is sent to the candidate, every
argument after the invocation context is passed through the converter
registered for its kind; unknown kinds pass through unchanged.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Type

from apicompare.domain.chain import Address, Cid, Message, MessageMatch, TipSetKey
from apicompare.domain.eth import EthAddress, EthBytes, EthCall, EthHash, EthUint64

Converter = Callable[[Any], Any]


def tipset_key_to_candidate(key: TipSetKey) -> Optional[List[Dict[str, str]]]:
    # The candidate encodes the empty key as null
    if key.is_empty():
        return None
    return key.to_json()


def message_to_candidate(msg: Message) -> Dict[str, Any]:
    """Candidate messages carry no CID field; it is derived server-side."""
    return {
        "Version": msg.version,
        "To": msg.to.value,
        "From": msg.from_.value,
        "Nonce": msg.nonce,
        "Value": msg.value,
        "GasLimit": msg.gas_limit,
        "GasFeeCap": msg.gas_fee_cap,
        "GasPremium": msg.gas_premium,
        "Method": msg.method,
        "Params": msg.params,
    }


def message_match_to_candidate(match: MessageMatch) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    if match.from_ is not None:
        payload["From"] = match.from_.value
    if match.to is not None:
        payload["To"] = match.to.value
    return payload


def eth_call_to_candidate(call: EthCall) -> Dict[str, Any]:
    payload = call.to_json()
    return {k: v for k, v in payload.items() if v is not None}


def _hex_quantity(value: EthUint64) -> str:
    return hex(value.value)


DEFAULT_CONVERTERS: Dict[Type[Any], Converter] = {
    TipSetKey: tipset_key_to_candidate,
    Message: message_to_candidate,
    MessageMatch: message_match_to_candidate,
    EthCall: eth_call_to_candidate,
    EthUint64: _hex_quantity,
    EthHash: lambda h: h.to_json(),
    EthAddress: lambda a: a.to_json(),
    EthBytes: lambda b: b.to_json(),
    Address: lambda a: a.value,
    Cid: lambda c: c.to_json(),
}


class ArgumentConverter:
    """Per-kind conversion of a request's argument list for the candidate."""

    def __init__(self, converters: Optional[Dict[Type[Any], Converter]] = None):
        self._converters: Dict[Type[Any], Converter] = dict(
            DEFAULT_CONVERTERS if converters is None else converters
        )

    def register(self, kind: Type[Any], converter: Converter) -> None:
        if not callable(converter):
            raise TypeError(f"Converter must be callable, got {type(converter)}")
        self._converters[kind] = converter

    def convert_one(self, value: Any) -> Any:
        converter = self._converters.get(type(value))
        if converter is None:
            for kind in type(value).__mro__[1:]:
                converter = self._converters.get(kind)
                if converter is not None:
                    break
        if converter is None:
            return value
        return converter(value)

    def convert(self, args: Sequence[Any]) -> List[Any]:
        """Convert every argument except the first (the invocation context)."""
        if not args:
            return []
        return [args[0]] + [self.convert_one(arg) for arg in args[1:]]
