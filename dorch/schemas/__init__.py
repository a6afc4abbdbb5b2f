"""
dorch.schemas - Schema definitions for the deployment orchestrator.

Unit -> (resolved order) -> UnitOutcome -> RunReport
                         -> DeploymentRecord / CallRecord

Lifecycle:
1. Unit: Static, version-controlled deployment step (deploy or call)
2. ContractArtifact: Compiled interface a Deploy unit instantiates
3. DeploymentRecord / CallRecord: Persisted result of a confirmed unit
4. UnitOutcome: Terminal status of a unit within one run
5. RunReport: All outcomes of a run, the basis for deciding to re-run
"""

from .unit import (
    Unit,
    ContractRef,
    DeployAction,
    CallAction,
    Action,
    DEFAULT_SENDER,
    UNIT_REF_PATTERN,
    ACCOUNT_REF_PATTERN,
    unit_ref,
    account_ref,
    find_unit_refs,
)
from .record import (
    DeploymentRecord,
    CallRecord,
    Record,
    record_from_dict,
)
from .artifact import (
    ContractArtifact,
)
from .outcome import (
    UnitStatus,
    UnitOutcome,
    RunReport,
    ULID,
)

__all__ = [
    # Unit
    "Unit",
    "ContractRef",
    "DeployAction",
    "CallAction",
    "Action",
    "DEFAULT_SENDER",
    "UNIT_REF_PATTERN",
    "ACCOUNT_REF_PATTERN",
    "unit_ref",
    "account_ref",
    "find_unit_refs",
    # Records
    "DeploymentRecord",
    "CallRecord",
    "Record",
    "record_from_dict",
    # Artifact
    "ContractArtifact",
    # Outcome
    "UnitStatus",
    "UnitOutcome",
    "RunReport",
    "ULID",
]
