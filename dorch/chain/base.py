"""
Chain client protocol and common types.

The chain client is the executor's only path to the network. It submits
transactions and waits for them to be confirmed; everything else (RPC
transport, signing, fee strategy) stays behind this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

from dorch.schemas import ContractArtifact


class ConfirmationStatus(str, Enum):
    """Result of waiting for a transaction."""
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    REVERTED = "reverted"


@dataclass(frozen=True)
class SubmittedTransaction:
    """
    A transaction accepted by the node.

    Attributes:
        tx_hash: Transaction hash
        address: Predicted contract address for deployments, if known
    """
    tx_hash: str
    address: Optional[str] = None


@dataclass(frozen=True)
class Confirmation:
    """
    Outcome of waiting for a transaction.

    Attributes:
        status: confirmed, timed_out or reverted
        tx_hash: Transaction hash
        contract_address: Created contract address (deployments only)
        block_number: Block the transaction was mined in
    """
    status: ConfirmationStatus
    tx_hash: str
    contract_address: Optional[str] = None
    block_number: Optional[int] = None


class ChainClient(ABC):
    """
    Abstract base class for chain clients.

    Methods raise on submission errors; confirmation outcomes are returned
    as values so the executor can classify them.
    """

    @abstractmethod
    def accounts(self) -> list[str]:
        """Signer addresses available to named accounts, by index."""
        pass

    @abstractmethod
    def deploy_contract(
        self,
        contract_name: str,
        artifact: Optional[ContractArtifact],
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        """
        Submit a contract deployment.

        Args:
            contract_name: Contract interface name
            artifact: Compiled interface (ABI + bytecode), None if unknown
            args: Resolved constructor arguments
            sender: Sender address

        Returns:
            The submitted transaction
        """
        pass

    @abstractmethod
    def call_method(
        self,
        address: str,
        artifact: Optional[ContractArtifact],
        method: str,
        args: Sequence[Any],
        sender: str,
    ) -> SubmittedTransaction:
        """
        Submit a state-changing method call.

        Args:
            address: Target contract address
            artifact: Target contract interface, None if unknown
            method: Method name
            args: Resolved method arguments
            sender: Sender address

        Returns:
            The submitted transaction
        """
        pass

    @abstractmethod
    def await_confirmation(self, tx_hash: str, timeout_s: float) -> Confirmation:
        """
        Wait for a transaction to be mined.

        Args:
            tx_hash: Transaction hash
            timeout_s: Maximum wait in seconds

        Returns:
            Confirmation with status confirmed, timed_out or reverted
        """
        pass
