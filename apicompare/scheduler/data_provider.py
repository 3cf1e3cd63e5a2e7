"""
Per-checkpoint fixture data.

Extracts realistic request arguments (sample messages, senders, ID
addresses, Ethereum hashes) from the checkpoint being compared so that
operations exercise live chain data.
"""

from dataclasses import dataclass, replace
from typing import Any, List, Optional, Tuple

from apicompare.domain.chain import DEFAULT_MINER, Address, Cid, Message, TipSet
from apicompare.domain.eth import EthAddress, EthHash, EthUint64
from apicompare.exceptions import SetupError
from apicompare.utils.logger import get_logger, log_operation

logger = get_logger(__name__)


@dataclass(frozen=True)
class FixtureDataSet:
    """
    Immutable snapshot of sample inputs for one checkpoint.

    Attributes:
        tipset: Checkpoint the data was derived from
        messages: Successful parent messages, those with an events root first
        senders: Unique sender addresses, in first-seen order
        ids: Unique ID-protocol recipient addresses, in first-seen order
        block_hash: Ethereum hash of the checkpoint (None if lookup failed)
        tx_hash: Ethereum hash of the first sample message (None if unavailable)
    """

    tipset: TipSet
    messages: Tuple[Message, ...] = ()
    senders: Tuple[Address, ...] = ()
    ids: Tuple[Address, ...] = ()
    default_miner: Address = DEFAULT_MINER
    block_hash: Optional[EthHash] = None
    tx_hash: Optional[EthHash] = None

    @property
    def height(self) -> int:
        return self.tipset.height

    def message(self) -> Optional[Message]:
        return self.messages[0] if self.messages else None

    def sender(self) -> Optional[Address]:
        return self.senders[0] if self.senders else None

    def id_address(self) -> Address:
        return self.ids[0] if self.ids else self.default_miner

    def block_param(self) -> str:
        """Checkpoint height as an Eth block-number parameter ("0x1f4")."""
        return EthUint64(self.tipset.height).to_json()

    def eth_address(self) -> EthAddress:
        return EthAddress.from_filecoin_address(self.default_miner)

    def require_block_hash(self) -> EthHash:
        if self.block_hash is None:
            raise SetupError(f"no block hash fixture at height {self.height}")
        return self.block_hash


def _unique(addresses: List[Address]) -> Tuple[Address, ...]:
    seen = {}
    for addr in addresses:
        seen.setdefault(addr, None)
    return tuple(seen)


class DataProvider:
    """
    Builds the FixtureDataSet for each pass from the reference node.

    Only the scheduler calls reset(); operations read `data`.
    """

    def __init__(self, client: Any, default_miner: Address = DEFAULT_MINER):
        """
        Args:
            client: Reference RpcClient (anything exposing call(method, *params))
            default_miner: Address used when no sample ID address is found
        """
        self.client = client
        self.default_miner = default_miner
        self._data: Optional[FixtureDataSet] = None

    @property
    def data(self) -> FixtureDataSet:
        if self._data is None:
            raise SetupError("fixture data requested before the first reset")
        return self._data

    @log_operation("reset_fixtures")
    def reset(self, tipset: TipSet) -> FixtureDataSet:
        """
        Rebuild the fixture data for a checkpoint.

        Raises:
            SetupError: If the checkpoint is empty or its messages cannot be read
        """
        if len(tipset) == 0:
            raise SetupError("ts is empty")

        self._data = self._generate(tipset)
        return self._data

    def _generate(self, tipset: TipSet) -> FixtureDataSet:
        block = tipset.cids[0]
        try:
            parent_messages = self.client.call("ChainGetParentMessages", block) or []
            receipts = self.client.call("ChainGetParentReceipts", block) or []
        except Exception as e:
            raise SetupError(f"failed to load parent messages of block {block}: {e}") from e

        if not isinstance(parent_messages, list) or not isinstance(receipts, list):
            raise SetupError(f"block {block} parent messages or receipts are not lists")
        if len(parent_messages) != len(receipts):
            raise SetupError(
                f"block {block} message not match receipts, "
                f"{len(parent_messages)} {len(receipts)}"
            )

        ids: List[Address] = []
        senders: List[Address] = []
        with_events: List[Message] = []
        plain: List[Message] = []

        for index, (entry, receipt) in enumerate(zip(parent_messages, receipts)):
            try:
                if receipt.get("ExitCode", 0) != 0:
                    continue
                msg = Message.from_json(entry["Message"])
                if entry.get("Cid") and msg.cid is None:
                    msg = replace(msg, cid=Cid.from_json(entry["Cid"]))
                has_events = bool(receipt.get("EventsRoot"))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise SetupError(
                    f"block {block} parent message {index} is malformed: {e!r}"
                ) from e

            try:
                if msg.to.is_id():
                    ids.append(msg.to)
            except ValueError:
                logger.debug(f"Skipping malformed recipient {msg.to}", operation="reset_fixtures")
            senders.append(msg.from_)

            if has_events:
                with_events.append(msg)
            else:
                plain.append(msg)

        messages = tuple(with_events + plain)
        first = messages[0] if messages else None

        data = FixtureDataSet(
            tipset=tipset,
            messages=messages,
            senders=_unique(senders),
            ids=_unique(ids),
            default_miner=self.default_miner,
            block_hash=self._lookup_block_hash(tipset),
            tx_hash=self._lookup_tx_hash(first),
        )

        logger.info(
            f"Fixture data ready for height {tipset.height}",
            operation="reset_fixtures",
            context={
                "height": tipset.height,
                "messages": len(data.messages),
                "senders": len(data.senders),
                "ids": len(data.ids),
            },
        )
        return data

    def _lookup_block_hash(self, tipset: TipSet) -> Optional[EthHash]:
        try:
            block = self.client.call(
                "EthGetBlockByNumber", EthUint64(tipset.height).to_json(), False
            )
            return EthHash.from_hex(block["hash"])
        except Exception as e:
            logger.warning(
                "Block hash lookup failed",
                operation="reset_fixtures",
                context={"height": tipset.height},
                error=str(e),
            )
            return None

    def _lookup_tx_hash(self, msg: Optional[Message]) -> Optional[EthHash]:
        if msg is None or msg.cid is None:
            return None
        try:
            tx_hash = self.client.call("EthGetTransactionHashByCid", msg.cid)
            return EthHash.from_hex(tx_hash) if tx_hash else None
        except Exception as e:
            logger.warning(
                "Transaction hash lookup failed",
                operation="reset_fixtures",
                context={"message": str(msg.cid)},
                error=str(e),
            )
            return None

