"""
Operation catalogue.

Every `compare_<method>` method of ChainAPICompare is one registered
operation: it builds arguments from the current fixture data, sends one or
more comparison requests and raises on the first failure. Operations whose
fixture input is missing (no sample message or sender) succeed without
sending anything.
"""

import threading
from typing import Any, List, Optional, Tuple

from apicompare.compare import checkers
from apicompare.dispatch.dispatcher import Dispatcher
from apicompare.dispatch.request import CallContext, CallResult, ResultChecker
from apicompare.domain.chain import (
    DEFAULT_MESSAGE_CONFIDENCE,
    EMPTY_TSK,
    LOOKBACK_NO_LIMIT,
    Cid,
    MessageMatch,
    TipSet,
)
from apicompare.domain.eth import (
    BLOCK_PARAM_LATEST,
    EMPTY_ETH_HASH,
    EthAddress,
    EthBytes,
    EthCall,
    EthUint64,
)
from apicompare.exceptions import CompareError, SetupError
from apicompare.scheduler.data_provider import DataProvider, FixtureDataSet

# Network version used for actor code/manifest lookups
ACTOR_NETWORK_VERSION = 17

# DomainSeparationTag values from TicketProduction up to (excluding) PoStChainCommit
RANDOMNESS_TAGS = range(1, 9)
RANDOMNESS_ENTROPY = b"fixed-randomness"

TIPSET_LOOKBACK = 10
TOO_HIGH_OFFSET = 100
PATH_DISTANCE = 5
LIST_MESSAGES_LOOKBACK = 20
MAX_SEARCHED_MESSAGES = 5
FEE_HISTORY_BLOCKS = 10
ETH_BLOCK_NUMBER_TOLERANCE = 1
ETH_CALL_VALUE = 10


class OperationFailed(CompareError):
    """A comparison failed while iterating over several inputs."""

    def __init__(self, subject: str, cause: BaseException):
        super().__init__(f"{subject}, error: {cause}")
        self.subject = subject
        self.cause = cause


class ChainAPICompare:
    """Comparison operations over the chain, state and eth method groups."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        data_provider: DataProvider,
        reference_client: Any,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            dispatcher: Executes each request on both nodes
            data_provider: Source of the current pass's fixture data
            reference_client: Reference RpcClient, for lookups that feed arguments
            stop_event: Root cancellation signal carried by every request
        """
        self.dispatcher = dispatcher
        self.data_provider = data_provider
        self.reference_client = reference_client
        self.ctx = CallContext(stop_event or dispatcher.stop_event)

    @property
    def data(self) -> FixtureDataSet:
        return self.data_provider.data

    @property
    def tipset(self) -> TipSet:
        return self.data.tipset

    def send_and_wait(
        self,
        method: str,
        *args: Any,
        checker: Optional[ResultChecker] = None,
        expect_error: bool = False,
    ) -> CallResult:
        return self.dispatcher.compare(
            method, self.ctx, *args, checker=checker, expect_error=expect_error
        )

    # ------------------------------------------------------------------ #
    # chain
    # ------------------------------------------------------------------ #

    def compare_chain_get_tip_set(self) -> None:
        self.send_and_wait("ChainGetTipSet", self.tipset.key)

    def compare_chain_get_tip_set_by_height(self) -> None:
        height = self.tipset.height - TIPSET_LOOKBACK
        key = self.tipset.key

        self.send_and_wait("ChainGetTipSetByHeight", height, key)

        # Asking above the anchor tipset must be rejected by both nodes
        self.send_and_wait(
            "ChainGetTipSetByHeight", height + TOO_HIGH_OFFSET, key, expect_error=True
        )

    def compare_chain_get_block(self) -> None:
        for block in self.tipset.cids:
            try:
                self.send_and_wait("ChainGetBlock", block)
            except CompareError as e:
                raise OperationFailed(f"block: {block}", e) from e

    def compare_chain_get_block_messages(self) -> None:
        for block in self.tipset.cids:
            try:
                self.send_and_wait(
                    "ChainGetBlockMessages", block, checker=checkers.cids_subset("Cids")
                )
            except CompareError as e:
                raise OperationFailed(f"block: {block}", e) from e

    def compare_chain_get_message(self) -> None:
        for block in self.tipset.cids:
            try:
                block_messages = self.reference_client.call("ChainGetBlockMessages", block)
            except RuntimeError as e:
                raise SetupError(f"failed to get block {block} messages: {e}") from e

            for raw in (block_messages or {}).get("Cids") or ():
                msg_cid = Cid.from_json(raw)
                try:
                    self.send_and_wait(
                        "ChainGetMessage", msg_cid, checker=checkers.result_check_with_equal
                    )
                except CompareError as e:
                    raise OperationFailed(f"msg: {msg_cid}", e) from e

    def compare_chain_get_messages_in_tipset(self) -> None:
        self.send_and_wait(
            "ChainGetMessagesInTipset",
            self.tipset.key,
            checker=checkers.result_check_with_equal,
        )

    def compare_chain_get_parent_messages(self) -> None:
        for block in self.tipset.cids:
            try:
                self.send_and_wait(
                    "ChainGetParentMessages", block, checker=checkers.result_check_with_equal
                )
            except CompareError as e:
                raise OperationFailed(f"block: {block}", e) from e

    def compare_chain_get_parent_receipts(self) -> None:
        for block in self.tipset.cids:
            try:
                self.send_and_wait("ChainGetParentReceipts", block)
            except CompareError as e:
                raise OperationFailed(f"block: {block}", e) from e

    def compare_chain_get_path(self) -> None:
        ts = self.tipset
        try:
            start = TipSet.from_json(
                self.reference_client.call(
                    "ChainGetTipSetAfterHeight", ts.height - PATH_DISTANCE, ts.key
                )
            )
        except (RuntimeError, ValueError) as e:
            raise SetupError(f"failed to find path start: {e}") from e

        self.send_and_wait("ChainGetPath", start.key, ts.key)

    def compare_chain_get_genesis(self) -> None:
        self.send_and_wait("ChainGetGenesis", checker=checkers.tipset_equals)

    # ------------------------------------------------------------------ #
    # state
    # ------------------------------------------------------------------ #

    def compare_state_account_key(self) -> None:
        sender = self.data.sender()
        if sender is None:
            return
        self.send_and_wait("StateAccountKey", sender, self.tipset.key)

    def compare_state_get_randomness_from_beacon(self) -> None:
        ts = self.tipset
        for tag in RANDOMNESS_TAGS:
            self.send_and_wait(
                "StateGetRandomnessFromBeacon", tag, ts.height, RANDOMNESS_ENTROPY, ts.key
            )

    def compare_state_get_beacon_entry(self) -> None:
        self.send_and_wait("StateGetBeaconEntry", self.tipset.height)

    def compare_state_verified_registry_root_key(self) -> None:
        self.send_and_wait("StateVerifiedRegistryRootKey", self.tipset.key)

    def compare_state_verifier_status(self) -> None:
        self.send_and_wait(
            "StateVerifierStatus",
            self.data.default_miner,
            self.tipset.key,
            checker=checkers.big_int_equal,
        )

    def compare_state_network_name(self) -> None:
        self.send_and_wait("StateNetworkName")

    def compare_state_network_version(self) -> None:
        self.send_and_wait("StateNetworkVersion", self.tipset.key)

    def compare_search_wait_message(self) -> None:
        key = self.tipset.key
        for msg in self.data.messages[:MAX_SEARCHED_MESSAGES]:
            if msg.cid is None:
                continue
            self.send_and_wait("StateSearchMsg", key, msg.cid, LOOKBACK_NO_LIMIT, True)
            self.send_and_wait(
                "StateWaitMsg", msg.cid, DEFAULT_MESSAGE_CONFIDENCE, LOOKBACK_NO_LIMIT, True
            )

    def compare_state_get_network_params(self) -> None:
        self.send_and_wait("StateGetNetworkParams", checker=checkers.result_check_with_equal)

    def compare_state_actor_code_cids(self) -> None:
        self.send_and_wait("StateActorCodeCIDs", ACTOR_NETWORK_VERSION)

    def compare_state_actor_manifest_cid(self) -> None:
        self.send_and_wait("StateActorManifestCID", ACTOR_NETWORK_VERSION)

    def compare_state_call(self) -> None:
        msg = self.data.message()
        if msg is None:
            return
        self.send_and_wait(
            "StateCall", msg, EMPTY_TSK, checker=checkers.invoc_result_check(msg.cid)
        )

    def compare_state_replay(self) -> None:
        msg = self.data.message()
        if msg is None or msg.cid is None:
            return
        self.send_and_wait(
            "StateReplay", EMPTY_TSK, msg.cid, checker=checkers.invoc_result_check(msg.cid)
        )

    def compare_miner_get_base_info(self) -> None:
        ts = self.tipset
        self.send_and_wait("MinerGetBaseInfo", self.data.default_miner, ts.height, ts.parents)

    def compare_state_read_state(self) -> None:
        addr = self.data.sender() or self.data.default_miner
        self.send_and_wait("StateReadState", addr, self.tipset.key)

    def compare_state_list_messages(self) -> None:
        sender = self.data.sender()
        if sender is None:
            return
        self.send_and_wait(
            "StateListMessages",
            MessageMatch(from_=sender),
            EMPTY_TSK,
            self.tipset.height - LIST_MESSAGES_LOOKBACK,
        )

    def compare_state_decode_params(self) -> None:
        for msg in self.data.messages:
            if msg.params:
                self.send_and_wait("StateDecodeParams", msg.to, msg.method, msg.params, EMPTY_TSK)
                return

    # ------------------------------------------------------------------ #
    # eth
    # ------------------------------------------------------------------ #

    def compare_eth_accounts(self) -> None:
        # Neither node manages keys, both must return []
        self.send_and_wait("EthAccounts")

    def compare_eth_block_number(self) -> None:
        self.send_and_wait(
            "EthBlockNumber", checker=checkers.within_tolerance(ETH_BLOCK_NUMBER_TOLERANCE)
        )

    def compare_eth_get_block_transaction_count_by_number(self) -> None:
        self.send_and_wait("EthGetBlockTransactionCountByNumber", EthUint64(self.tipset.height))

    def compare_eth_get_block_transaction_count_by_hash(self) -> None:
        self.send_and_wait("EthGetBlockTransactionCountByHash", self.data.require_block_hash())

    def compare_eth_get_block_by_hash(self) -> None:
        block_hash = self.data.require_block_hash()
        for full_tx_info in (False, True):
            try:
                self.send_and_wait("EthGetBlockByHash", block_hash, full_tx_info)
            except CompareError as e:
                raise OperationFailed(
                    f"fullTxInfo: {full_tx_info}, blkhash {block_hash.to_json()}", e
                ) from e

    def compare_eth_get_block_by_number(self) -> None:
        block_param = self.data.block_param()
        try:
            self.send_and_wait("EthGetBlockByNumber", block_param, False)
        except CompareError as e:
            raise OperationFailed(f"block param {block_param}", e) from e

    def compare_eth_get_transaction_by_hash(self) -> None:
        if self.data.tx_hash is None:
            return
        self.send_and_wait("EthGetTransactionByHash", self.data.tx_hash)

    def compare_eth_get_transaction_count(self) -> None:
        sender = self.data.sender()
        if sender is None:
            return
        try:
            eth_sender = EthAddress.from_filecoin_address(sender)
        except ValueError:
            eth_sender = EthAddress.from_filecoin_address(self.data.id_address())
        self.send_and_wait("EthGetTransactionCount", eth_sender, self.data.block_param())

    def compare_eth_get_transaction_receipt(self) -> None:
        if self.data.tx_hash is None:
            return
        self.send_and_wait("EthGetTransactionReceipt", self.data.tx_hash)

    def compare_eth_get_transaction_by_block_hash_and_index(self) -> None:
        self.send_and_wait(
            "EthGetTransactionByBlockHashAndIndex", EMPTY_ETH_HASH, EthUint64(0)
        )

    def compare_eth_get_transaction_by_block_number_and_index(self) -> None:
        self.send_and_wait(
            "EthGetTransactionByBlockNumberAndIndex", EthUint64(self.tipset.height), EthUint64(0)
        )

    def compare_eth_get_code(self) -> None:
        self.send_and_wait("EthGetCode", self.data.eth_address(), BLOCK_PARAM_LATEST)

    def compare_eth_get_storage_at(self) -> None:
        self.send_and_wait(
            "EthGetStorageAt", self.data.eth_address(), EthBytes(), BLOCK_PARAM_LATEST
        )

    def compare_eth_get_balance(self) -> None:
        self.send_and_wait("EthGetBalance", self.data.eth_address(), self.data.block_param())

    def compare_eth_chain_id(self) -> None:
        self.send_and_wait("EthChainId")

    def compare_net_version(self) -> None:
        self.send_and_wait("NetVersion")

    def compare_net_listening(self) -> None:
        self.send_and_wait("NetListening")

    def compare_eth_protocol_version(self) -> None:
        self.send_and_wait("EthProtocolVersion")

    def compare_eth_gas_price(self) -> None:
        self.send_and_wait("EthGasPrice", checker=checkers.log_only("EthGasPrice"))

    def compare_eth_max_priority_fee_per_gas(self) -> None:
        self.send_and_wait(
            "EthMaxPriorityFeePerGas", checker=checkers.log_only("EthMaxPriorityFeePerGas")
        )

    def compare_web3_client_version(self) -> None:
        self.send_and_wait("Web3ClientVersion", checker=checkers.log_only("Web3ClientVersion"))

    def compare_eth_fee_history(self) -> None:
        self.send_and_wait(
            "EthFeeHistory", EthUint64(FEE_HISTORY_BLOCKS), self.data.block_param(), []
        )

    def _eth_calls(self) -> List[Tuple[str, EthCall]]:
        """An empty call, then a value transfer from the default miner to itself."""
        miner = self.data.eth_address()
        return [
            ("empty", EthCall()),
            ("self transfer", EthCall(from_=miner, to=miner, value=ETH_CALL_VALUE)),
        ]

    def compare_eth_call(self) -> None:
        for label, call in self._eth_calls():
            try:
                self.send_and_wait("EthCall", call, BLOCK_PARAM_LATEST)
            except CompareError as e:
                raise OperationFailed(f"call: {label}", e) from e

    def compare_eth_estimate_gas(self) -> None:
        for label, call in self._eth_calls():
            try:
                self.send_and_wait("EthEstimateGas", call, checker=checkers.big_int_equal)
            except CompareError as e:
                raise OperationFailed(f"call: {label}", e) from e

    def compare_eth_get_transaction_hash_by_cid(self) -> None:
        msg = self.data.message()
        if msg is None or msg.cid is None:
            return
        self.send_and_wait("EthGetTransactionHashByCid", msg.cid)

    def compare_eth_get_message_cid_by_transaction_hash(self) -> None:
        if self.data.tx_hash is None:
            return
        self.send_and_wait("EthGetMessageCidByTransactionHash", self.data.tx_hash)
