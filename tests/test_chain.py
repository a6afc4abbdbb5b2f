"""Tests for chain clients (dry run and web3, the latter against a mocked node)."""

from unittest.mock import MagicMock, patch

import pytest
from web3 import Web3
from web3.exceptions import TimeExhausted

from dorch.chain import ConfirmationStatus, DryRunChainClient
from dorch.chain.web3_client import Web3ChainClient, _checksum_args
from dorch.errors import ConfigError, SubmissionError
from dorch.schemas import ContractArtifact

from conftest import make_artifact


SIGNER = Web3.to_checksum_address("0x" + "ab" * 20)
TARGET = Web3.to_checksum_address("0x" + "cd" * 20)


class TestDryRunChainClient:
    """Deterministic rehearsal client."""

    def test_accounts_are_deterministic(self):
        assert DryRunChainClient("rinkeby").accounts() == DryRunChainClient("rinkeby").accounts()
        assert DryRunChainClient("rinkeby").accounts() != DryRunChainClient("mainnet").accounts()
        assert len(DryRunChainClient(num_accounts=5).accounts()) == 5

    def test_deploy_confirms_with_address(self):
        client = DryRunChainClient()
        submitted = client.deploy_contract("Controller", None, ["0x01"], "0xsender")
        confirmation = client.await_confirmation(submitted.tx_hash, timeout_s=1)
        assert confirmation.status == ConfirmationStatus.CONFIRMED
        assert confirmation.contract_address == submitted.address
        assert confirmation.contract_address.startswith("0x")
        assert len(confirmation.contract_address) == 42

    def test_call_has_no_address(self):
        client = DryRunChainClient()
        submitted = client.call_method("0x01", None, "init", [], "0xsender")
        assert submitted.address is None
        assert client.await_confirmation(submitted.tx_hash, 1).status == ConfirmationStatus.CONFIRMED

    def test_same_plan_same_hashes(self):
        def rehearse():
            client = DryRunChainClient("rinkeby")
            return [client.deploy_contract(name, None, [], "0x").tx_hash for name in ("A", "B")]
        assert rehearse() == rehearse()

    def test_records_submissions(self):
        client = DryRunChainClient()
        client.deploy_contract("A", None, [1], "0xsender")
        assert client.submitted[0]["op"] == "deploy"
        assert client.submitted[0]["args"] == [1]

    def test_unknown_hash_times_out(self):
        assert DryRunChainClient().await_confirmation("0xdead", 1).status == ConfirmationStatus.TIMED_OUT


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.accounts = [SIGNER]
    w3.eth.chain_id = 31337
    w3.eth.get_transaction_count.return_value = 5
    w3.eth.send_raw_transaction.return_value = b"\x12\x34"
    return w3


@pytest.fixture
def signer():
    account = MagicMock()
    account.address = SIGNER
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"signed")
    with patch("dorch.chain.web3_client.Account") as account_cls:
        account_cls.from_key.return_value = account
        yield account


class TestWeb3ChainClient:
    """Submission over a mocked Web3 instance."""

    def test_requires_url_or_w3(self):
        with pytest.raises(SubmissionError):
            Web3ChainClient()

    def test_invalid_private_key(self, w3):
        with pytest.raises(ConfigError, match=r"accounts\[0\]"):
            Web3ChainClient(private_keys=["0xnotakey"], w3=w3)

    def test_node_accounts_without_keys(self, w3):
        client = Web3ChainClient(w3=w3)
        assert client.accounts() == [SIGNER]

    def test_node_managed_deploy(self, w3):
        fn = w3.eth.contract.return_value.constructor.return_value
        fn.transact.return_value = b"\xab"

        client = Web3ChainClient(w3=w3)
        submitted = client.deploy_contract("Controller", make_artifact("Controller", 1), [TARGET.lower()], SIGNER)

        assert submitted.tx_hash == "0xab"
        w3.eth.contract.return_value.constructor.assert_called_once_with(TARGET)
        fn.transact.assert_called_once_with({"from": SIGNER})

    def test_signed_deploy(self, w3, signer):
        fn = w3.eth.contract.return_value.constructor.return_value
        fn.build_transaction.return_value = {"nonce": 5}

        client = Web3ChainClient(private_keys=["0xkey"], chain_id=4, gas={"max_fee_gwei": 50, "priority_fee_gwei": 2}, w3=w3)
        assert client.accounts() == [SIGNER]

        submitted = client.deploy_contract("Controller", make_artifact("Controller"), [], SIGNER)

        assert submitted.tx_hash == "0x1234"
        params = fn.build_transaction.call_args[0][0]
        assert params["nonce"] == 5
        assert params["chainId"] == 4
        assert params["maxFeePerGas"] == 50 * 10**9
        assert params["maxPriorityFeePerGas"] == 2 * 10**9
        signer.sign_transaction.assert_called_once_with({"nonce": 5})
        w3.eth.send_raw_transaction.assert_called_once_with(b"signed")

    def test_nonce_tracking(self, w3, signer):
        fn = w3.eth.contract.return_value.constructor.return_value
        fn.build_transaction.side_effect = lambda params: dict(params)

        client = Web3ChainClient(private_keys=["0xkey"], chain_id=4, w3=w3)
        client.deploy_contract("A", make_artifact("A"), [], SIGNER)
        client.deploy_contract("B", make_artifact("B"), [], SIGNER)

        nonces = [call.args[0]["nonce"] for call in fn.build_transaction.call_args_list]
        assert nonces == [5, 6]

    def test_gas_limit_multiplier(self, w3):
        fn = w3.eth.contract.return_value.constructor.return_value
        fn.estimate_gas.return_value = 100_000
        fn.transact.return_value = b"\x01"

        client = Web3ChainClient(gas={"gas_limit_multiplier": 1.5}, w3=w3)
        client.deploy_contract("A", make_artifact("A"), [], SIGNER)
        assert fn.transact.call_args[0][0]["gas"] == 150_000

    def test_unknown_sender_with_keys(self, w3, signer):
        client = Web3ChainClient(private_keys=["0xkey"], chain_id=4, w3=w3)
        with pytest.raises(SubmissionError, match="No private key"):
            client.deploy_contract("A", make_artifact("A"), [], TARGET)

    def test_missing_or_undeployable_artifact(self, w3):
        client = Web3ChainClient(w3=w3)
        with pytest.raises(SubmissionError, match="No artifact"):
            client.deploy_contract("A", None, [], SIGNER)
        with pytest.raises(SubmissionError, match="no bytecode"):
            client.deploy_contract("IA", ContractArtifact("IA", [], "0x"), [], SIGNER)
        with pytest.raises(SubmissionError, match="unlinked"):
            client.deploy_contract("L", ContractArtifact("L", [], "0x60__$abc$__"), [], SIGNER)

    def test_call_method(self, w3):
        contract = w3.eth.contract.return_value
        fn = contract.get_function_by_name.return_value.return_value
        fn.transact.return_value = b"\xcc"

        client = Web3ChainClient(w3=w3)
        submitted = client.call_method(TARGET.lower(), make_artifact("Controller", methods={"init": 1}), "init", [SIGNER], SIGNER)

        assert submitted.tx_hash == "0xcc"
        assert w3.eth.contract.call_args.kwargs["address"] == TARGET
        contract.get_function_by_name.assert_called_once_with("init")
        contract.get_function_by_name.return_value.assert_called_once_with(SIGNER)

    def test_call_requires_abi(self, w3):
        with pytest.raises(SubmissionError, match="No ABI"):
            Web3ChainClient(w3=w3).call_method(TARGET, None, "init", [], SIGNER)

    def test_confirmed(self, w3):
        w3.eth.wait_for_transaction_receipt.return_value = {
            "status": 1, "contractAddress": TARGET, "blockNumber": 12,
        }
        confirmation = Web3ChainClient(w3=w3).await_confirmation("0xab", timeout_s=30)
        assert confirmation.status == ConfirmationStatus.CONFIRMED
        assert confirmation.contract_address == TARGET
        assert confirmation.block_number == 12
        w3.eth.wait_for_transaction_receipt.assert_called_once_with("0xab", timeout=30)

    def test_reverted(self, w3):
        w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "contractAddress": None, "blockNumber": 12}
        assert Web3ChainClient(w3=w3).await_confirmation("0xab", 30).status == ConfirmationStatus.REVERTED

    def test_timed_out(self, w3):
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("too slow")
        assert Web3ChainClient(w3=w3).await_confirmation("0xab", 1).status == ConfirmationStatus.TIMED_OUT


class TestChecksumArgs:
    def test_nested_addresses_checksummed(self):
        args = [TARGET.lower(), [SIGNER.lower(), 5], {"to": TARGET.lower()}, "not-an-address"]
        assert _checksum_args(args) == [TARGET, [SIGNER, 5], {"to": TARGET}, "not-an-address"]
