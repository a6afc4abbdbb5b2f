"""
dorch.chain - Chain clients used by the executor.

- ChainClient: abstract submit/confirm interface
- Web3ChainClient: JSON-RPC client (web3.py + eth-account)
- DryRunChainClient: deterministic no-op client for rehearsals

Web3ChainClient is imported from dorch.chain.web3_client directly so that
planning and dry runs do not need an RPC endpoint.
"""

from .base import (
    ChainClient,
    Confirmation,
    ConfirmationStatus,
    SubmittedTransaction,
)
from .dry_run import DryRunChainClient

__all__ = [
    "ChainClient",
    "Confirmation",
    "ConfirmationStatus",
    "SubmittedTransaction",
    "DryRunChainClient",
]
