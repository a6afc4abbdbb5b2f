"""Shared fixtures for dorch tests."""

from typing import Any, Optional, Sequence

import pytest

from dorch.artifact_store import InMemoryArtifactStore
from dorch.chain import ChainClient, Confirmation, ConfirmationStatus, SubmittedTransaction
from dorch.registry import UnitRegistry
from dorch.schemas import ContractArtifact, unit_ref
from dorch.templates import call_unit, deploy_unit


class FakeChainClient(ChainClient):
    """
    Recording chain client.

    Deployments get sequential addresses (0x...01, 0x...02, ...). Failures are
    injected per contract name (deploys) or method name (calls):
        client.fail["Storage"] = "revert" | "timeout" | "submit"
    """

    def __init__(self, num_accounts: int = 3):
        self._accounts = [f"0x{'a' * 39}{i}" for i in range(num_accounts)]
        self.fail: dict[str, str] = {}
        self.deployments: list[dict[str, Any]] = []
        self.calls: list[dict[str, Any]] = []
        self._next = 1
        self._pending: dict[str, dict[str, Any]] = {}

    def accounts(self) -> list[str]:
        return list(self._accounts)

    def _submit(self, key: str, deploys: bool) -> SubmittedTransaction:
        mode = self.fail.get(key)
        if mode == "submit":
            raise ConnectionError(f"node refused {key}")
        tx_hash = f"0x{self._next:064x}"
        address = f"0x{self._next:040x}" if deploys else None
        self._next += 1
        self._pending[tx_hash] = {"address": address, "mode": mode}
        return SubmittedTransaction(tx_hash=tx_hash)

    def deploy_contract(
        self,
        contract_name: str,
        artifact: Optional[ContractArtifact],
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        self.deployments.append({"contract": contract_name, "args": list(args), "sender": sender})
        return self._submit(contract_name, deploys=True)

    def call_method(
        self,
        address: str,
        artifact: Optional[ContractArtifact],
        method: str,
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        self.calls.append({"address": address, "method": method, "args": list(args), "sender": sender})
        return self._submit(method, deploys=False)

    def await_confirmation(self, tx_hash: str, timeout_s: float) -> Confirmation:
        pending = self._pending.pop(tx_hash)
        if pending["mode"] == "timeout":
            return Confirmation(status=ConfirmationStatus.TIMED_OUT, tx_hash=tx_hash)
        if pending["mode"] == "revert":
            return Confirmation(status=ConfirmationStatus.REVERTED, tx_hash=tx_hash, block_number=1)
        return Confirmation(
            status=ConfirmationStatus.CONFIRMED,
            tx_hash=tx_hash,
            contract_address=pending["address"],
            block_number=len(self.deployments) + len(self.calls),
        )

    @property
    def deployed_contracts(self) -> list[str]:
        return [d["contract"] for d in self.deployments]


@pytest.fixture
def client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def store() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


@pytest.fixture
def chain_registry() -> UnitRegistry:
    """A -> B -> C, each deploy taking the previous address."""
    return UnitRegistry([
        deploy_unit("A"),
        deploy_unit("B", args=[unit_ref("A")]),
        deploy_unit("C", args=[unit_ref("B")]),
    ])


@pytest.fixture
def token_registry() -> UnitRegistry:
    """Token, Storage (references Controller), Controller and Init."""
    return UnitRegistry([
        deploy_unit("Token"),
        deploy_unit("Storage", args=[unit_ref("Controller")]),
        deploy_unit("Controller", args=["@account.deployer"]),
        call_unit(
            "Init",
            target="Controller",
            method="init",
            args=[unit_ref("Token"), unit_ref("Storage"), unit_ref("Controller")],
            dependencies=["Token", "Storage", "Controller"],
        ),
    ])


def make_artifact(name: str, constructor_inputs: int = 0, methods: Optional[dict[str, int]] = None) -> ContractArtifact:
    """Build a minimal Hardhat-style artifact."""
    abi: list[dict[str, Any]] = []
    if constructor_inputs:
        abi.append({
            "type": "constructor",
            "inputs": [{"name": f"arg{i}", "type": "address"} for i in range(constructor_inputs)],
        })
    for method, argc in (methods or {}).items():
        abi.append({
            "type": "function",
            "name": method,
            "inputs": [{"name": f"arg{i}", "type": "address"} for i in range(argc)],
            "outputs": [],
        })
    return ContractArtifact(contract_name=name, abi=abi, bytecode="0x6080")
