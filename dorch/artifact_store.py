"""
ArtifactStore - Persist deployment results and contract interfaces.

The ArtifactStore manages:
- DeploymentRecords / CallRecords keyed by (unit_name, network_id)
- ContractArtifacts keyed by contract_name
- RunReports (history of runs per network)

Records are the only mutable shared state of a run. The executor is the
single writer; a record is written only after its transaction is confirmed.

Storage backends:
- In-memory (for testing and dry runs)
- File-based (deployments/<network>/<unit>.json, survives restarts)
"""

import json
import logging
import os
import random
import re
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from dorch.errors import RecordExistsError
from dorch.schemas import ContractArtifact, Record, RunReport, record_from_dict


logger = logging.getLogger(__name__)

NETWORK_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")

RUNS_DIRNAME = ".runs"


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    # Timestamp component (48 bits = 10 chars in base32)
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(ALPHABET[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    # Random component (80 bits = 16 chars in base32)
    random_part = "".join(random.choice(ALPHABET) for _ in range(16))

    return timestamp_part + random_part


def _check_network(network_id: str) -> str:
    if not network_id or not NETWORK_PATTERN.match(network_id):
        raise ValueError(f"Invalid network id: {network_id!r}")
    return network_id


class ArtifactStore(ABC):
    """
    Abstract base class for deployment state storage.

    Implementations must provide methods to:
    - Read, write, delete and list records per network
    - Read and register contract artifacts
    - Store and retrieve run reports
    """

    @abstractmethod
    def get_record(self, unit_name: str, network_id: str) -> Optional[Record]:
        """
        Retrieve the record for a unit on a network.

        Returns:
            The record if present, None otherwise
        """
        pass

    @abstractmethod
    def put_record(self, network_id: str, record: Record, replace: bool = False) -> None:
        """
        Write the record for (record.unit_name, network_id).

        Args:
            network_id: Target network
            record: Record to write
            replace: Overwrite an existing record (force redeploy)

        Raises:
            RecordExistsError: If a record exists and replace is False
        """
        pass

    @abstractmethod
    def delete_record(self, unit_name: str, network_id: str) -> bool:
        """
        Remove a record (explicit operator action only).

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    def list_records(self, network_id: str) -> list[Record]:
        """All records for a network, sorted by unit name."""
        pass

    @abstractmethod
    def get_artifact(self, contract_name: str) -> Optional[ContractArtifact]:
        """Retrieve a contract interface by name, None if unknown."""
        pass

    @abstractmethod
    def put_artifact(self, artifact: ContractArtifact) -> None:
        """Register a contract interface."""
        pass

    @abstractmethod
    def list_artifacts(self) -> list[str]:
        """Known contract names, sorted."""
        pass

    @abstractmethod
    def store_report(self, report: RunReport) -> str:
        """
        Store a run report.

        Returns:
            A reference string for retrieving the report
        """
        pass

    @abstractmethod
    def get_report(self, network_id: str, run_id: str) -> Optional[RunReport]:
        """Retrieve a stored run report."""
        pass

    @abstractmethod
    def list_reports(self, network_id: str) -> list[str]:
        """Run ids of stored reports for a network, oldest first."""
        pass

    def get_address(self, unit_name: str, network_id: str) -> Optional[str]:
        """Deployed address of a unit, None if it has no deployment record."""
        record = self.get_record(unit_name, network_id)
        return getattr(record, "address", None)


class InMemoryArtifactStore(ArtifactStore):
    """
    In-memory implementation of ArtifactStore for testing and dry runs.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self, artifacts: Optional[list[ContractArtifact]] = None):
        self._records: dict[tuple[str, str], Record] = {}
        self._artifacts: dict[str, ContractArtifact] = {}
        self._reports: dict[str, dict[str, RunReport]] = {}
        for artifact in artifacts or []:
            self.put_artifact(artifact)

    def get_record(self, unit_name: str, network_id: str) -> Optional[Record]:
        return self._records.get((unit_name, network_id))

    def put_record(self, network_id: str, record: Record, replace: bool = False) -> None:
        key = (record.unit_name, _check_network(network_id))
        if key in self._records and not replace:
            raise RecordExistsError(f"Record already exists for {record.unit_name} on {network_id}")
        self._records[key] = record

    def delete_record(self, unit_name: str, network_id: str) -> bool:
        return self._records.pop((unit_name, network_id), None) is not None

    def list_records(self, network_id: str) -> list[Record]:
        return [
            record for (name, network), record in sorted(self._records.items())
            if network == network_id
        ]

    def get_artifact(self, contract_name: str) -> Optional[ContractArtifact]:
        return self._artifacts.get(contract_name)

    def put_artifact(self, artifact: ContractArtifact) -> None:
        self._artifacts[artifact.contract_name] = artifact

    def list_artifacts(self) -> list[str]:
        return sorted(self._artifacts)

    def store_report(self, report: RunReport) -> str:
        self._reports.setdefault(report.network, {})[report.run_id] = report
        return f"mem://{report.network}/{report.run_id}"

    def get_report(self, network_id: str, run_id: str) -> Optional[RunReport]:
        return self._reports.get(network_id, {}).get(run_id)

    def list_reports(self, network_id: str) -> list[str]:
        return sorted(self._reports.get(network_id, {}))

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._records.clear()
        self._artifacts.clear()
        self._reports.clear()


class FileArtifactStore(ArtifactStore):
    """
    File-based implementation of ArtifactStore.

    Stores records as JSON files in a directory tree:
        deployments_dir/
            {network}/
                {unit_name}.json
                .runs/
                    {run_id}.json

    Contract artifacts are read from a Hardhat artifacts directory
    (artifacts/contracts/**/{Contract}.json; *.dbg.json files are ignored).
    """

    def __init__(self, deployments_dir: Path | str, artifacts_dir: Optional[Path | str] = None):
        self._deployments_dir = Path(deployments_dir)
        self._artifacts_dir = Path(artifacts_dir) if artifacts_dir else None
        self._artifacts: Optional[dict[str, ContractArtifact]] = None
        self._deployments_dir.mkdir(parents=True, exist_ok=True)

    @property
    def deployments_dir(self) -> Path:
        return self._deployments_dir

    def _network_dir(self, network_id: str) -> Path:
        return self._deployments_dir / _check_network(network_id)

    def _record_path(self, unit_name: str, network_id: str) -> Path:
        return self._network_dir(network_id) / f"{unit_name}.json"

    def _write_json(self, path: Path, data: Any) -> None:
        """Write JSON via a temp file and atomic rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_name, path)
        finally:
            if os.path.exists(temp_name):
                os.unlink(temp_name)

    def get_record(self, unit_name: str, network_id: str) -> Optional[Record]:
        path = self._record_path(unit_name, network_id)
        if not path.exists():
            return None
        with open(path) as f:
            data = json.load(f)
        return record_from_dict(data)

    def put_record(self, network_id: str, record: Record, replace: bool = False) -> None:
        path = self._record_path(record.unit_name, network_id)
        if path.exists() and not replace:
            raise RecordExistsError(f"Record already exists for {record.unit_name} on {network_id}: {path}")
        self._write_json(path, record.to_dict())
        logger.debug(f"Wrote record {path}")

    def delete_record(self, unit_name: str, network_id: str) -> bool:
        path = self._record_path(unit_name, network_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Removed record {path}")
        return True

    def list_records(self, network_id: str) -> list[Record]:
        network_dir = self._network_dir(network_id)
        if not network_dir.exists():
            return []
        records = []
        for path in sorted(network_dir.glob("*.json")):
            with open(path) as f:
                records.append(record_from_dict(json.load(f)))
        return records

    def _load_artifacts(self) -> dict[str, ContractArtifact]:
        """Index the artifacts directory on first use."""
        if self._artifacts is not None:
            return self._artifacts

        self._artifacts = {}
        if self._artifacts_dir is None or not self._artifacts_dir.exists():
            return self._artifacts

        for path in sorted(self._artifacts_dir.rglob("*.json")):
            if path.name.endswith(".dbg.json"):
                continue
            try:
                with open(path) as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable artifact {path}: {e}")
                continue
            if not isinstance(data, dict) or "contractName" not in data or "abi" not in data:
                continue
            artifact = ContractArtifact.from_dict(data)
            if artifact.contract_name in self._artifacts:
                logger.warning(f"Duplicate artifact for {artifact.contract_name}: {path}")
            self._artifacts[artifact.contract_name] = artifact

        logger.debug(f"Indexed {len(self._artifacts)} artifact(s) from {self._artifacts_dir}")
        return self._artifacts

    def get_artifact(self, contract_name: str) -> Optional[ContractArtifact]:
        return self._load_artifacts().get(contract_name)

    def put_artifact(self, artifact: ContractArtifact) -> None:
        self._load_artifacts()[artifact.contract_name] = artifact

    def list_artifacts(self) -> list[str]:
        return sorted(self._load_artifacts())

    def store_report(self, report: RunReport) -> str:
        path = self._network_dir(report.network) / RUNS_DIRNAME / f"{report.run_id}.json"
        self._write_json(path, report.to_dict())
        return f"file://{path}"

    def get_report(self, network_id: str, run_id: str) -> Optional[RunReport]:
        path = self._network_dir(network_id) / RUNS_DIRNAME / f"{run_id}.json"
        if not path.exists():
            return None
        with open(path) as f:
            return RunReport.from_dict(json.load(f))

    def list_reports(self, network_id: str) -> list[str]:
        runs_dir = self._network_dir(network_id) / RUNS_DIRNAME
        if not runs_dir.exists():
            return []
        return sorted(p.stem for p in runs_dir.glob("*.json"))
