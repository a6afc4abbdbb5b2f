"""
Record schemas - persisted results of executed units.

DeploymentRecord is written after a Deploy unit's transaction is confirmed.
CallRecord is written after a tracked (once=True) Call unit is confirmed.

Both are keyed by (unit_name, network_id) in the ArtifactStore and are never
written speculatively.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DeploymentRecord:
    """
    A deployed contract instance.

    Attributes:
        unit_name: Deployment (unit) name
        contract_name: Contract interface that was instantiated
        address: Deployed contract address
        constructor_args: Fully resolved constructor arguments
        network_id: Network the contract lives on
        transaction_hash: Hash of the deployment transaction
        block_number: Block the deployment was mined in, if known
        deployed_at: When the record was written
    """
    unit_name: str
    contract_name: str
    address: str
    constructor_args: tuple = ()
    network_id: str = ""
    transaction_hash: str = ""
    block_number: Optional[int] = None
    deployed_at: datetime = field(default_factory=_utcnow)

    kind = "deployment"

    def __post_init__(self):
        object.__setattr__(self, "constructor_args", tuple(self.constructor_args))
        if not self.address:
            raise ValueError(f"Deployment record for '{self.unit_name}' has no address")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "kind": self.kind,
            "unit_name": self.unit_name,
            "contract_name": self.contract_name,
            "address": self.address,
            "constructor_args": list(self.constructor_args),
            "network_id": self.network_id,
            "transaction_hash": self.transaction_hash,
            "deployed_at": self.deployed_at.isoformat(),
        }
        if self.block_number is not None:
            result["block_number"] = self.block_number
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentRecord":
        """Deserialize from dictionary."""
        return cls(
            unit_name=data["unit_name"],
            contract_name=data.get("contract_name", data["unit_name"]),
            address=data["address"],
            constructor_args=tuple(data.get("constructor_args", [])),
            network_id=data.get("network_id", ""),
            transaction_hash=data.get("transaction_hash", ""),
            block_number=data.get("block_number"),
            deployed_at=datetime.fromisoformat(data["deployed_at"]) if data.get("deployed_at") else _utcnow(),
        )


@dataclass(frozen=True)
class CallRecord:
    """
    A confirmed method call made by a tracked Call unit.

    Attributes:
        unit_name: Call unit name
        target_address: Address of the called contract
        method: Method name
        args: Fully resolved call arguments
        network_id: Network the call was made on
        transaction_hash: Hash of the call transaction
        block_number: Block the call was mined in, if known
        called_at: When the record was written
    """
    unit_name: str
    target_address: str
    method: str
    args: tuple = ()
    network_id: str = ""
    transaction_hash: str = ""
    block_number: Optional[int] = None
    called_at: datetime = field(default_factory=_utcnow)

    kind = "call"

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "kind": self.kind,
            "unit_name": self.unit_name,
            "target_address": self.target_address,
            "method": self.method,
            "args": list(self.args),
            "network_id": self.network_id,
            "transaction_hash": self.transaction_hash,
            "called_at": self.called_at.isoformat(),
        }
        if self.block_number is not None:
            result["block_number"] = self.block_number
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CallRecord":
        """Deserialize from dictionary."""
        return cls(
            unit_name=data["unit_name"],
            target_address=data["target_address"],
            method=data["method"],
            args=tuple(data.get("args", [])),
            network_id=data.get("network_id", ""),
            transaction_hash=data.get("transaction_hash", ""),
            block_number=data.get("block_number"),
            called_at=datetime.fromisoformat(data["called_at"]) if data.get("called_at") else _utcnow(),
        )


Record = Union[DeploymentRecord, CallRecord]


def record_from_dict(data: dict[str, Any]) -> Record:
    """Deserialize either record kind, dispatching on the 'kind' key."""
    if data.get("kind", "deployment") == "call":
        return CallRecord.from_dict(data)
    return DeploymentRecord.from_dict(data)
