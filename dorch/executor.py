"""
Executor - Walk a resolved order and bring each unit to a terminal state.

The Executor implements:
- Idempotent skip (a unit with a persisted record is not re-executed)
- Symbolic value resolution (@unit.*, @account.*, {"ether": ...})
- Deploy and call actions through a ChainClient
- Record persistence after confirmation (never speculatively)
- Fail-fast: the first failure leaves every later unit pending
- Operator abort between units

Per-unit state machine:
    pending -> skipped
    pending -> running -> succeeded | failed

Execution flow:
1. Generate a run id
2. For each unit in order:
   a. Stop if an abort was requested
   b. Skip if idempotent, recorded and not forced
   c. Resolve args, submit, await confirmation
   d. Write the DeploymentRecord / CallRecord
3. Store the RunReport

There is no automatic retry; re-running the same command resumes after the
last recorded unit.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Union

from web3 import Web3

from dorch.artifact_store import ArtifactStore, generate_ulid
from dorch.chain import ChainClient, Confirmation, ConfirmationStatus, SubmittedTransaction
from dorch.errors import (
    ConfirmationTimeout,
    ExecutionError,
    RevertedError,
    SubmissionError,
    UnknownUnitError,
)
from dorch.registry import UnitRegistry
from dorch.resolver import dependency_levels, resolve
from dorch.schemas import (
    ACCOUNT_REF_PATTERN,
    UNIT_REF_PATTERN,
    CallAction,
    CallRecord,
    ContractArtifact,
    DeploymentRecord,
    Record,
    RunReport,
    Unit,
    UnitOutcome,
    UnitStatus,
)
from dorch.selector import Selection, select


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 300

# Named accounts when none are configured (hardhat namedAccounts default)
DEFAULT_ACCOUNTS: dict[str, Union[int, str]] = {"deployer": 0}


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _record_address(record: Record) -> str:
    if isinstance(record, CallRecord):
        return record.target_address
    return record.address


@dataclass(frozen=True)
class _ActionResult:
    address: str
    transaction_hash: str
    record: Optional[Record]


@dataclass(frozen=True)
class PlannedUnit:
    """
    Preview of what a run would do with one unit.

    Attributes:
        unit: The unit
        level: Dependency depth within the order
        recorded: Existing record for the network, if any
        will_run: False if the unit would be skipped
    """
    unit: Unit
    level: int
    recorded: Optional[Record]
    will_run: bool

    @property
    def summary(self) -> str:
        if not self.will_run:
            return "already deployed" if self.unit.is_deploy else "already called"
        if self.recorded is not None:
            return "would redeploy" if self.unit.is_deploy else "would call again"
        return "would deploy" if self.unit.is_deploy else "would call"


class Executor:
    """
    Execution engine for a resolved unit order on one network.

    Usage:
        executor = Executor(
            store=FileArtifactStore("deployments", "artifacts"),
            client=Web3ChainClient.from_network_config(network),
            network="rinkeby",
            accounts={"deployer": 0, "agent": 1},
        )
        report = executor.execute(registry, resolve(registry, ["ControllerInit"]))

    The executor is the store's only writer for the duration of a run.
    """

    def __init__(
        self,
        store: ArtifactStore,
        client: ChainClient,
        network: str,
        accounts: Optional[dict[str, Union[int, str]]] = None,
        force: bool = False,
        force_units: Iterable[str] = (),
        track_calls: bool = False,
        default_timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        """
        Initialize the executor.

        Args:
            store: ArtifactStore holding records and contract artifacts
            client: ChainClient used to submit and confirm transactions
            network: Network identifier records are keyed by
            accounts: Named accounts (index into client.accounts() or address)
            force: Re-run every idempotent unit, replacing its record
            force_units: Re-run only these units
            track_calls: Treat Call units without an explicit `once` as tracked
            default_timeout_s: Confirmation timeout when the unit sets none
        """
        self._store = store
        self._client = client
        self._network = network
        self._accounts = dict(DEFAULT_ACCOUNTS if accounts is None else accounts)
        self._force = force
        self._force_units = frozenset(force_units)
        self._track_calls = track_calls
        self._default_timeout_s = default_timeout_s
        self._abort = threading.Event()
        self._resolved_accounts: Optional[list[str]] = None

    @property
    def network(self) -> str:
        return self._network

    def abort(self) -> None:
        """Request a stop before the next unit. Safe to call from any thread."""
        self._abort.set()

    @property
    def abort_requested(self) -> bool:
        return self._abort.is_set()

    def is_tracked(self, unit: Unit) -> bool:
        """Whether an existing record satisfies this unit."""
        if unit.once is None and unit.is_call:
            return self._track_calls
        return unit.idempotent

    def is_forced(self, unit: Unit) -> bool:
        return self._force or unit.name in self._force_units

    def should_skip(self, unit: Unit) -> Optional[Record]:
        """Return the record satisfying this unit, or None if it must run."""
        if not self.is_tracked(unit) or self.is_forced(unit):
            return None
        return self._store.get_record(unit.name, self._network)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def execute(self, registry: UnitRegistry, order: list[str]) -> RunReport:
        """
        Execute units in the given order.

        Args:
            registry: Registry the names in `order` belong to
            order: Resolved order (see dorch.resolver.resolve)

        Returns:
            RunReport with one outcome per unit in `order`
        """
        run_id = generate_ulid()
        started_at = _utcnow()
        outcomes: dict[str, UnitOutcome] = {
            name: UnitOutcome(unit_name=name, status=UnitStatus.PENDING,
                              action=registry.get(name).action.kind)
            for name in order
        }
        aborted = False

        logger.info(f"Run {run_id} on {self._network}: {len(order)} unit(s)")

        for name in order:
            if self._abort.is_set():
                aborted = True
                logger.warning(f"Run {run_id} aborted before {name}")
                break

            unit = registry.get(name)
            outcome = self._execute_unit(unit)
            outcomes[name] = outcome

            if outcome.status == UnitStatus.FAILED:
                remaining = [n for n in order if outcomes[n].status == UnitStatus.PENDING]
                if remaining:
                    logger.warning(f"Halting run; left pending: {', '.join(remaining)}")
                break

        report = RunReport(
            run_id=run_id,
            network=self._network,
            started_at=started_at,
            completed_at=_utcnow(),
            outcomes=tuple(outcomes[name] for name in order),
            aborted=aborted,
        )
        ref = self._store.store_report(report)
        counts = report.counts()
        logger.info(
            f"Run {run_id} finished: {counts['succeeded']} succeeded, {counts['skipped']} skipped, "
            f"{counts['failed']} failed, {counts['pending']} pending ({ref})"
        )
        return report

    def _execute_unit(self, unit: Unit) -> UnitOutcome:
        """Bring one unit from pending to a terminal state."""
        kind = unit.action.kind

        existing = self.should_skip(unit)
        if existing is not None:
            logger.info(f"[{unit.name}] pending -> skipped (recorded at {_record_address(existing)})")
            return UnitOutcome(
                unit_name=unit.name,
                status=UnitStatus.SKIPPED,
                action=kind,
                address=_record_address(existing),
            )

        started_at = _utcnow()
        logger.info(f"[{unit.name}] pending -> running ({kind})")
        try:
            if isinstance(unit.action, CallAction):
                result = self._run_call(unit)
            else:
                result = self._run_deploy(unit)

            if result.record is not None:
                # Units that always run (once: false) overwrite their previous record
                replace = self.is_forced(unit) or not self.is_tracked(unit)
                self._store.put_record(self._network, result.record, replace=replace)

            logger.info(f"[{unit.name}] running -> succeeded at {result.address} ({result.transaction_hash})")
            return UnitOutcome(
                unit_name=unit.name,
                status=UnitStatus.SUCCEEDED,
                action=kind,
                started_at=started_at,
                completed_at=_utcnow(),
                address=result.address,
                transaction_hash=result.transaction_hash,
            )

        except Exception as e:
            error = e if isinstance(e, ExecutionError) else SubmissionError(str(e), cause=e)
            error.unit_name = unit.name
            error_info = {
                "type": type(e).__name__,
                "kind": error.kind,
                "message": str(e),
            }
            logger.error(f"[{unit.name}] running -> failed: {error_info['kind']}: {e}")
            return UnitOutcome(
                unit_name=unit.name,
                status=UnitStatus.FAILED,
                action=kind,
                started_at=started_at,
                completed_at=_utcnow(),
                error=error_info,
            )

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _run_deploy(self, unit: Unit) -> _ActionResult:
        action = unit.action
        contract_name = action.contract_name
        args = self.resolve_value(list(action.args))
        artifact = self._store.get_artifact(contract_name)

        if artifact is not None:
            expected = len(artifact.constructor_inputs)
            if expected != len(args):
                raise SubmissionError(
                    f"{contract_name} constructor takes {expected} argument(s), got {len(args)}"
                )

        sender = self.account_address(unit.sender)
        logger.debug(f"[{unit.name}] deploying {contract_name} from {sender} with {args}")
        submitted = self._client.deploy_contract(contract_name, artifact, args, sender)
        confirmation = self._confirm(unit, submitted)

        address = confirmation.contract_address or submitted.address
        if not address:
            raise SubmissionError(f"No contract address in receipt for {submitted.tx_hash}")

        record = DeploymentRecord(
            unit_name=unit.name,
            contract_name=contract_name,
            address=address,
            constructor_args=tuple(args),
            network_id=self._network,
            transaction_hash=confirmation.tx_hash,
            block_number=confirmation.block_number,
        )
        return _ActionResult(address=address, transaction_hash=confirmation.tx_hash, record=record)

    def _run_call(self, unit: Unit) -> _ActionResult:
        action = unit.action
        target_record = self._store.get_record(action.target, self._network)
        if not isinstance(target_record, DeploymentRecord):
            raise SubmissionError(f"Call target {action.target} has no deployment on {self._network}")

        args = self.resolve_value(list(action.args))
        artifact = self._store.get_artifact(target_record.contract_name)
        if artifact is not None:
            self._check_method(artifact, action.method, len(args))

        sender = self.account_address(unit.sender)
        logger.debug(f"[{unit.name}] calling {action.target}.{action.method} from {sender} with {args}")
        submitted = self._client.call_method(target_record.address, artifact, action.method, args, sender)
        confirmation = self._confirm(unit, submitted)

        record = None
        if self.is_tracked(unit):
            record = CallRecord(
                unit_name=unit.name,
                target_address=target_record.address,
                method=action.method,
                args=tuple(args),
                network_id=self._network,
                transaction_hash=confirmation.tx_hash,
                block_number=confirmation.block_number,
            )
        return _ActionResult(address=target_record.address, transaction_hash=confirmation.tx_hash, record=record)

    @staticmethod
    def _check_method(artifact: ContractArtifact, method: str, argc: int) -> None:
        if method not in artifact.method_names:
            raise SubmissionError(f"{artifact.contract_name} has no method {method}")
        arities = artifact.method_arities(method)
        if argc not in arities:
            expected = " or ".join(str(n) for n in sorted(arities))
            raise SubmissionError(f"{artifact.contract_name}.{method} takes {expected} argument(s), got {argc}")

    def _confirm(self, unit: Unit, submitted: SubmittedTransaction) -> Confirmation:
        timeout_s = unit.timeout_s or self._default_timeout_s
        logger.debug(f"[{unit.name}] awaiting {submitted.tx_hash} (timeout {timeout_s}s)")
        confirmation = self._client.await_confirmation(submitted.tx_hash, timeout_s)

        if confirmation.status == ConfirmationStatus.TIMED_OUT:
            raise ConfirmationTimeout(
                f"{submitted.tx_hash} not confirmed within {timeout_s}s", unit_name=unit.name
            )
        if confirmation.status == ConfirmationStatus.REVERTED:
            raise RevertedError(f"Transaction {submitted.tx_hash} reverted", unit_name=unit.name)
        return confirmation

    # -------------------------------------------------------------------------
    # Symbolic values
    # -------------------------------------------------------------------------

    def account_address(self, name: str) -> str:
        """
        Resolve a named account to an address.

        Raises:
            SubmissionError: If the account is unknown or its index is out of range
        """
        if name not in self._accounts:
            raise SubmissionError(f"Unknown account: {name}")
        value = self._accounts[name]
        if isinstance(value, str):
            return value

        if self._resolved_accounts is None:
            self._resolved_accounts = self._client.accounts()
        if not 0 <= value < len(self._resolved_accounts):
            raise SubmissionError(
                f"Account '{name}' is index {value} but only {len(self._resolved_accounts)} signer(s) available"
            )
        return self._resolved_accounts[value]

    def resolve_value(self, value: Any) -> Any:
        """
        Resolve symbolic values in an arg (recursively).

        @unit.<Name> resolves to the unit's recorded address on this network,
        @account.<name> to a named account and {"ether": "1.5"} to wei.

        Raises:
            SubmissionError: If a reference cannot be resolved
        """
        if isinstance(value, str):
            match = UNIT_REF_PATTERN.match(value)
            if match:
                address = self._store.get_address(match.group(1), self._network)
                if address is None:
                    raise SubmissionError(f"{value}: no deployment record on {self._network}")
                return address
            match = ACCOUNT_REF_PATTERN.match(value)
            if match:
                return self.account_address(match.group(1))
            return value
        elif isinstance(value, dict):
            if set(value) == {"ether"}:
                try:
                    return Web3.to_wei(Decimal(str(value["ether"])), "ether")
                except (InvalidOperation, ValueError) as e:
                    raise SubmissionError(f"Invalid ether amount {value['ether']!r}: {e}") from e
            return {k: self.resolve_value(v) for k, v in value.items()}
        elif isinstance(value, (list, tuple)):
            return [self.resolve_value(v) for v in value]
        else:
            return value

    # -------------------------------------------------------------------------
    # Preview
    # -------------------------------------------------------------------------

    def plan(self, registry: UnitRegistry, order: list[str]) -> list[PlannedUnit]:
        """Describe what execute() would do, without touching the chain."""
        levels = dependency_levels(registry, order)
        planned = []
        for name in order:
            unit = registry.get(name)
            recorded = self._store.get_record(name, self._network)
            planned.append(PlannedUnit(
                unit=unit,
                level=levels[name],
                recorded=recorded,
                will_run=self.should_skip(unit) is None,
            ))
        return planned


def deploy(
    registry: UnitRegistry,
    store: ArtifactStore,
    client: ChainClient,
    network: str,
    selection: Optional[Selection] = None,
    accounts: Optional[dict[str, Union[int, str]]] = None,
    force: bool = False,
    force_units: Iterable[str] = (),
    track_calls: bool = False,
    default_timeout_s: int = DEFAULT_TIMEOUT_S,
) -> RunReport:
    """
    Select, resolve and execute units on a network.

    Resolution errors (unknown units, cycles, empty selections) are raised
    before any transaction is submitted.

    Args:
        registry: Unit catalog
        store: ArtifactStore for records, artifacts and reports
        client: ChainClient for the target network
        network: Network identifier
        selection: Units/tags to deploy (None deploys everything)
        accounts: Named accounts
        force: Re-run every idempotent unit in the order
        force_units: Re-run only these units
        track_calls: Record Call units and skip them on later runs
        default_timeout_s: Confirmation timeout

    Returns:
        RunReport of the run
    """
    force_units = list(force_units)
    for name in force_units:
        if name not in registry:
            raise UnknownUnitError(name)

    order = resolve(registry, select(registry, selection))
    executor = Executor(
        store=store,
        client=client,
        network=network,
        accounts=accounts,
        force=force,
        force_units=force_units,
        track_calls=track_calls,
        default_timeout_s=default_timeout_s,
    )
    return executor.execute(registry, order)
