"""
ContractArtifact schema - compiled contract interface metadata.

Artifacts are produced by the compiler toolchain (Hardhat layout:
artifacts/contracts/<File>.sol/<Contract>.json) and treated as opaque
apart from the ABI entries dorch validates against.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ContractArtifact:
    """
    A compiled contract interface.

    Attributes:
        contract_name: Interface identity (matches ContractRef.contract_name)
        abi: ABI entries
        bytecode: Creation bytecode (hex string, may be empty for interfaces)
    """
    contract_name: str
    abi: list[dict[str, Any]] = field(default_factory=list)
    bytecode: str = ""

    @property
    def constructor_inputs(self) -> list[dict[str, Any]]:
        """Constructor inputs from the ABI (empty if no explicit constructor)."""
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return list(entry.get("inputs", []))
        return []

    @property
    def method_names(self) -> set[str]:
        """Names of all functions in the ABI."""
        return {e["name"] for e in self.abi if e.get("type") == "function" and "name" in e}

    def method_arities(self, method: str) -> set[int]:
        """Input counts accepted by a method (several if overloaded)."""
        return {
            len(e.get("inputs", []))
            for e in self.abi
            if e.get("type") == "function" and e.get("name") == method
        }

    @property
    def is_deployable(self) -> bool:
        return bool(self.bytecode) and self.bytecode != "0x"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the Hardhat artifact shape."""
        return {
            "contractName": self.contract_name,
            "abi": self.abi,
            "bytecode": self.bytecode,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContractArtifact":
        """Deserialize from a Hardhat artifact dictionary."""
        if "contractName" not in data or "abi" not in data:
            raise ValueError("Artifact must contain 'contractName' and 'abi'")
        return cls(
            contract_name=data["contractName"],
            abi=list(data["abi"]),
            bytecode=data.get("bytecode", ""),
        )
