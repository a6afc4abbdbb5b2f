"""
Dry-run chain client.

Submits nothing. Every transaction is "confirmed" immediately with a
deterministic pseudo address and hash, so a whole plan can be rehearsed
against a throw-away store before touching a live network.
"""

import hashlib
import logging
from typing import Any, Optional, Sequence

from dorch.chain.base import ChainClient, Confirmation, ConfirmationStatus, SubmittedTransaction
from dorch.schemas import ContractArtifact


logger = logging.getLogger(__name__)

DEFAULT_DRY_RUN_ACCOUNTS = 3


def _hex(seed: str, length: int) -> str:
    return hashlib.sha256(seed.encode()).hexdigest()[:length]


class DryRunChainClient(ChainClient):
    """
    No-op chain client for dry-run mode.

    Addresses and hashes derive from (network, nonce, payload), so the same
    plan yields the same values on every rehearsal.
    """

    def __init__(self, network: str = "dry-run", num_accounts: int = DEFAULT_DRY_RUN_ACCOUNTS):
        self._network = network
        self._accounts = [f"0x{_hex(f'{network}:account:{i}', 40)}" for i in range(num_accounts)]
        self._nonce = 0
        self._pending: dict[str, Optional[str]] = {}
        self.submitted: list[dict[str, Any]] = []

    def accounts(self) -> list[str]:
        return list(self._accounts)

    def _submit(self, payload: dict[str, Any], deploys: bool) -> SubmittedTransaction:
        seed = f"{self._network}:{self._nonce}:{payload}"
        self._nonce += 1
        tx_hash = f"0x{_hex(seed, 64)}"
        address = f"0x{_hex(seed + ':address', 40)}" if deploys else None
        self._pending[tx_hash] = address
        self.submitted.append({"tx_hash": tx_hash, **payload})
        logger.info(f"[DRY-RUN] {payload.get('op')} {payload.get('name')} -> {tx_hash[:10]}")
        return SubmittedTransaction(tx_hash=tx_hash, address=address)

    def deploy_contract(
        self,
        contract_name: str,
        artifact: Optional[ContractArtifact],
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        return self._submit(
            {"op": "deploy", "name": contract_name, "args": list(args), "sender": sender},
            deploys=True,
        )

    def call_method(
        self,
        address: str,
        artifact: Optional[ContractArtifact],
        method: str,
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        return self._submit(
            {"op": "call", "name": method, "address": address, "args": list(args), "sender": sender},
            deploys=False,
        )

    def await_confirmation(self, tx_hash: str, timeout_s: float) -> Confirmation:
        if tx_hash not in self._pending:
            return Confirmation(status=ConfirmationStatus.TIMED_OUT, tx_hash=tx_hash)
        return Confirmation(
            status=ConfirmationStatus.CONFIRMED,
            tx_hash=tx_hash,
            contract_address=self._pending.pop(tx_hash),
            block_number=self._nonce,
        )
