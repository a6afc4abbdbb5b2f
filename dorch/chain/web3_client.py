"""
Web3 chain client - submit deployments and calls over JSON-RPC.

Signing:
- With private keys configured, transactions are built and signed locally
  (eth-account) and sent raw. Nonces are tracked per sender.
- Without keys, the node's own accounts are used (Hardhat / localhost).

Fees: EIP-1559 fields from the network gas config when given, otherwise
web3 fills gas and fees in.
"""

import logging
import re
from typing import Any, Optional, Sequence

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from dorch.chain.base import ChainClient, Confirmation, ConfirmationStatus, SubmittedTransaction
from dorch.errors import ConfigError, SubmissionError
from dorch.schemas import ContractArtifact


logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

DEFAULT_REQUEST_TIMEOUT_S = 60


def _checksum_args(value: Any) -> Any:
    """Checksum every address-shaped string in (nested) args."""
    if isinstance(value, str) and ADDRESS_PATTERN.match(value):
        return Web3.to_checksum_address(value)
    if isinstance(value, (list, tuple)):
        return [_checksum_args(v) for v in value]
    if isinstance(value, dict):
        return {k: _checksum_args(v) for k, v in value.items()}
    return value


class Web3ChainClient(ChainClient):
    """
    Chain client backed by web3.py.

    Usage:
        client = Web3ChainClient.from_network_config(config.get_network("rinkeby"))
        tx = client.deploy_contract("Controller", artifact, [deployer], deployer)
        confirmation = client.await_confirmation(tx.tx_hash, timeout_s=120)
    """

    def __init__(
        self,
        url: Optional[str] = None,
        private_keys: Sequence[str] = (),
        chain_id: Optional[int] = None,
        gas: Optional[dict[str, Any]] = None,
        request_timeout_s: int = DEFAULT_REQUEST_TIMEOUT_S,
        w3: Optional[Web3] = None,
    ):
        """
        Initialize the client.

        Args:
            url: JSON-RPC endpoint (ignored when w3 is given)
            private_keys: Signing keys; account i is private_keys[i]
            chain_id: Chain id for signed transactions (queried if None)
            gas: Fee settings (max_fee_gwei, priority_fee_gwei, gas_limit_multiplier)
            request_timeout_s: HTTP request timeout
            w3: Pre-built Web3 instance
        """
        if w3 is None:
            if not url:
                raise SubmissionError("Web3ChainClient requires a url or a Web3 instance")
            w3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": request_timeout_s}))
        self.w3 = w3
        self._signers = {}
        for i, key in enumerate(private_keys):
            try:
                account = Account.from_key(key)
            except Exception as e:
                raise ConfigError(f"Invalid private key at accounts[{i}]: {type(e).__name__}") from e
            self._signers[account.address] = account
        self._signer_order = list(self._signers)
        self._chain_id = chain_id
        self._gas = gas or {}
        self._nonces: dict[str, int] = {}

    @classmethod
    def from_network_config(cls, network: Any) -> "Web3ChainClient":
        """Build a client from a dorch.config.NetworkConfig."""
        try:
            return cls(
                url=network.url,
                private_keys=network.accounts,
                chain_id=network.chain_id,
                gas=network.gas,
            )
        except (ConfigError, SubmissionError) as e:
            raise ConfigError(f"Network {network.name}: {e}") from e

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self.w3.eth.chain_id
        return self._chain_id

    def accounts(self) -> list[str]:
        if self._signer_order:
            return list(self._signer_order)
        return list(self.w3.eth.accounts)

    def _next_nonce(self, sender: str) -> int:
        on_chain = self.w3.eth.get_transaction_count(sender, "pending")
        nonce = max(on_chain, self._nonces.get(sender, 0))
        self._nonces[sender] = nonce + 1
        return nonce

    def _tx_params(self, sender: str) -> dict[str, Any]:
        params: dict[str, Any] = {"from": sender}
        if "max_fee_gwei" in self._gas:
            params["maxFeePerGas"] = Web3.to_wei(self._gas["max_fee_gwei"], "gwei")
        if "priority_fee_gwei" in self._gas:
            params["maxPriorityFeePerGas"] = Web3.to_wei(self._gas["priority_fee_gwei"], "gwei")
        return params

    def _send(self, fn: Any, sender: str) -> str:
        """Estimate, sign (or delegate to the node) and send a contract function."""
        sender = Web3.to_checksum_address(sender)
        params = self._tx_params(sender)

        multiplier = self._gas.get("gas_limit_multiplier")
        if multiplier:
            estimate = fn.estimate_gas({"from": sender})
            params["gas"] = int(estimate * float(multiplier))
            logger.debug(f"Gas estimate {estimate}, limit {params['gas']}")

        if sender in self._signers:
            params["nonce"] = self._next_nonce(sender)
            params["chainId"] = self.chain_id
            tx = fn.build_transaction(params)
            signed = self._signers[sender].sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        elif self._signers:
            raise SubmissionError(f"No private key configured for sender {sender}")
        else:
            tx_hash = fn.transact(params)
        return Web3.to_hex(tx_hash)

    def deploy_contract(
        self,
        contract_name: str,
        artifact: Optional[ContractArtifact],
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        if artifact is None:
            raise SubmissionError(f"No artifact found for contract {contract_name}")
        if not artifact.is_deployable:
            raise SubmissionError(f"Contract {contract_name} has no bytecode (abstract or interface?)")
        if "__$" in artifact.bytecode:
            raise SubmissionError(f"Contract {contract_name} has unlinked libraries")

        contract = self.w3.eth.contract(abi=artifact.abi, bytecode=artifact.bytecode)
        tx_hash = self._send(contract.constructor(*_checksum_args(list(args))), sender)
        logger.info(f"Submitted deployment of {contract_name}: {tx_hash}")
        return SubmittedTransaction(tx_hash=tx_hash)

    def call_method(
        self,
        address: str,
        artifact: Optional[ContractArtifact],
        method: str,
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        if artifact is None:
            raise SubmissionError(f"No ABI available for contract at {address}")

        contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=artifact.abi)
        fn = contract.get_function_by_name(method)(*_checksum_args(list(args)))
        tx_hash = self._send(fn, sender)
        logger.info(f"Submitted {method} on {address}: {tx_hash}")
        return SubmittedTransaction(tx_hash=tx_hash)

    def await_confirmation(self, tx_hash: str, timeout_s: float) -> Confirmation:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout_s)
        except TimeExhausted:
            return Confirmation(status=ConfirmationStatus.TIMED_OUT, tx_hash=tx_hash)

        status = ConfirmationStatus.CONFIRMED if receipt["status"] == 1 else ConfirmationStatus.REVERTED
        return Confirmation(
            status=status,
            tx_hash=tx_hash,
            contract_address=receipt.get("contractAddress"),
            block_number=receipt.get("blockNumber"),
        )
