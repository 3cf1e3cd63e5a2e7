"""
Unit tests for per-checkpoint fixture data (apicompare/scheduler/data_provider.py)
"""

import pytest

from apicompare.domain.chain import DEFAULT_MINER, Address, TipSet
from apicompare.domain.eth import EthHash
from apicompare.exceptions import SetupError
from apicompare.scheduler.data_provider import DataProvider, FixtureDataSet
from tests.fakes import FakeClient, cid, tipset_json

BLOCK_HASH = "0x" + "ab" * 32
TX_HASH = "0x" + "cd" * 32


def parent_message(cid_value, to, sender, params=None):
    return {
        "Cid": cid(cid_value),
        "Message": {
            "Version": 0,
            "To": to,
            "From": sender,
            "Nonce": 1,
            "Value": "0",
            "GasLimit": 1000,
            "GasFeeCap": "100",
            "GasPremium": "1",
            "Method": 0,
            "Params": params,
        },
    }


@pytest.fixture
def tipset():
    return TipSet.from_json(tipset_json(500, cids=("bafyA", "bafyB")))


@pytest.fixture
def client():
    return FakeClient(
        {
            "ChainGetParentMessages": [
                parent_message("bafym1", "t01001", "t1sender"),
                parent_message("bafym2", "t3bls", "t1other"),
                parent_message("bafym3", "t01002", "t1sender"),
                parent_message("bafym4", "t01003", "t1failed"),
            ],
            "ChainGetParentReceipts": [
                {"ExitCode": 0},
                {"ExitCode": 0, "EventsRoot": cid("bafyevents")},
                {"ExitCode": 0},
                {"ExitCode": 16},
            ],
            "EthGetBlockByNumber": {"hash": BLOCK_HASH},
            "EthGetTransactionHashByCid": TX_HASH,
        }
    )


class TestReset:
    """Tests for DataProvider.reset."""

    def test_successful_messages_only(self, client, tipset):
        """Test failed receipts are skipped and event messages come first."""
        data = DataProvider(client).reset(tipset)

        assert [str(m.cid) for m in data.messages] == ["bafym2", "bafym1", "bafym3"]

    def test_unique_senders_and_ids(self, client, tipset):
        """Test senders and ID recipients are de-duplicated in first-seen order."""
        data = DataProvider(client).reset(tipset)

        assert data.senders == (Address("t1sender"), Address("t1other"))
        assert data.ids == (Address("t01001"), Address("t01002"))
        assert data.sender() == Address("t1sender")
        assert data.id_address() == Address("t01001")

    def test_uses_first_block_of_checkpoint(self, client, tipset):
        """Test parent messages are read from the first block."""
        DataProvider(client).reset(tipset)

        method, params = client.calls[0]
        assert method == "ChainGetParentMessages"
        assert str(params[0]) == "bafyA"

    def test_eth_hashes(self, client, tipset):
        """Test block and transaction hashes are looked up."""
        data = DataProvider(client).reset(tipset)

        assert data.block_hash == EthHash.from_hex(BLOCK_HASH)
        assert data.tx_hash == EthHash.from_hex(TX_HASH)
        assert ("EthGetBlockByNumber", ("0x1f4", False)) in client.calls

    def test_hash_lookup_failures_are_tolerated(self, client, tipset):
        """Test failed Eth lookups leave the hashes unset."""
        client.errors["EthGetBlockByNumber"] = RuntimeError("not found")
        client.errors["EthGetTransactionHashByCid"] = RuntimeError("not found")

        data = DataProvider(client).reset(tipset)

        assert data.block_hash is None
        assert data.tx_hash is None
        with pytest.raises(SetupError, match="no block hash"):
            data.require_block_hash()

    def test_empty_tipset(self, client):
        """Test an empty checkpoint raises SetupError."""
        with pytest.raises(SetupError, match="ts is empty"):
            DataProvider(client).reset(TipSet(height=1, cids=()))

    def test_receipt_count_mismatch(self, tipset):
        """Test a receipt list of a different length raises SetupError."""
        client = FakeClient(
            {
                "ChainGetParentMessages": [parent_message("bafym1", "t01001", "t1a")],
                "ChainGetParentReceipts": [],
            }
        )
        with pytest.raises(SetupError, match="message not match receipts"):
            DataProvider(client).reset(tipset)

    def test_parent_message_failure(self, tipset):
        """Test a failing reference call raises SetupError."""
        client = FakeClient(errors={"ChainGetParentMessages": RuntimeError("down")})
        with pytest.raises(SetupError, match="failed to load parent messages"):
            DataProvider(client).reset(tipset)

    @pytest.mark.parametrize(
        "messages, receipts",
        [
            ([{"Message": {"Nonce": 1}}], [{"ExitCode": 0}]),
            ([{"Cid": cid("bafym1")}], [{"ExitCode": 0}]),
            ([parent_message("bafym1", "t01001", "t1a")], ["ok"]),
            ([None], [{"ExitCode": 0}]),
            ({"Message": {}}, [{"ExitCode": 0}]),
        ],
    )
    def test_malformed_entries(self, tipset, messages, receipts):
        """Test undecodable parent messages or receipts raise SetupError."""
        client = FakeClient(
            {"ChainGetParentMessages": messages, "ChainGetParentReceipts": receipts}
        )
        with pytest.raises(SetupError, match="block bafyA"):
            DataProvider(client).reset(tipset)

    def test_no_messages(self, tipset):
        """Test a checkpoint without parent messages yields empty fixtures."""
        client = FakeClient({"EthGetBlockByNumber": {"hash": BLOCK_HASH}})
        data = DataProvider(client).reset(tipset)

        assert data.messages == ()
        assert data.message() is None
        assert data.sender() is None
        assert data.id_address() == DEFAULT_MINER
        assert data.tx_hash is None


class TestFixtureDataSet:
    """Tests for FixtureDataSet accessors."""

    def test_data_before_reset(self):
        """Test reading fixtures before the first pass raises SetupError."""
        with pytest.raises(SetupError):
            DataProvider(FakeClient()).data

    def test_block_param_and_eth_address(self):
        """Test the Eth block parameter and the miner's masked-ID address."""
        data = FixtureDataSet(tipset=TipSet(height=500, cids=()))

        assert data.height == 500
        assert data.block_param() == "0x1f4"
        assert data.eth_address().to_json() == "0xff" + "00" * 11 + "00000000000003e8"

    def test_data_is_replaced_each_reset(self, client, tipset):
        """Test a new reset publishes a new snapshot."""
        provider = DataProvider(client)
        first = provider.reset(tipset)
        second = provider.reset(TipSet.from_json(tipset_json(501)))

        assert provider.data is second
        assert first.height == 500
        assert second.height == 501
