"""
CLI interface for the dorch deployment orchestrator.

Provides commands to plan and run deployments, inspect units and manage
deployment records.

Units are defined as YAML/JSON files in the definitions directory
(paths.definitions in dorch.yaml) and deployed to the networks configured
under networks.*.

Exit codes for deploy:
    0  every selected unit succeeded or was skipped
    1  a unit failed or was left pending
    2  the run could not be planned (unknown unit, cycle, empty selection,
       invalid definitions or configuration)
"""

import json
import shutil
import signal
from pathlib import Path

import click
import yaml
from rich.table import Table

from dorch import __version__
from dorch.artifact_store import FileArtifactStore, InMemoryArtifactStore
from dorch.chain import DryRunChainClient
from dorch.chain.web3_client import Web3ChainClient
from dorch.config import DorchConfig, default_config_path, load_config
from dorch.errors import ConfigError, ResolutionError, UnitValidationError
from dorch.executor import Executor
from dorch.registry import UnitRegistry
from dorch.resolver import resolve
from dorch.selector import Selection, select
from dorch.utils import (
    console,
    format_duration,
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    report_table,
    setup_logging,
)


# Bundled unit definitions (copied by `dorch init`)
BUNDLED_DEFINITIONS_DIR = Path(__file__).parent / "definitions"

EXIT_FAILED = 1
EXIT_UNPLANNABLE = 2


@click.group()
@click.version_option(version=__version__, prog_name="dorch")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Configuration file (default: $DORCH_CONFIG or ./dorch.yaml)",
)
@click.pass_context
def main(ctx, config_path):
    """
    dorch - Deployment orchestrator for interdependent smart contracts.

    Resolves unit dependencies, deploys each unit at most once per network
    and records the resulting addresses.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _load(ctx) -> DorchConfig:
    """Load configuration or exit with the planning error code."""
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        click.echo("Run 'dorch init' to create a configuration file.", err=True)
        raise SystemExit(EXIT_UNPLANNABLE)


def _load_registry(config: DorchConfig) -> UnitRegistry:
    definitions_dir = config.definitions_dir
    if not definitions_dir.exists():
        raise ConfigError(f"Definitions directory not found: {definitions_dir}")
    return UnitRegistry.from_directory(definitions_dir)


def _store(config: DorchConfig) -> FileArtifactStore:
    return FileArtifactStore(config.deployments_dir, config.artifacts_dir)


def _rehearsal_store(store: FileArtifactStore, network: str) -> InMemoryArtifactStore:
    """Throw-away copy of a network's records and all artifacts."""
    rehearsal = InMemoryArtifactStore()
    for name in store.list_artifacts():
        rehearsal.put_artifact(store.get_artifact(name))
    for record in store.list_records(network):
        rehearsal.put_record(network, record)
    return rehearsal


# =============================================================================
# Deploy / plan
# =============================================================================


@main.command("deploy")
@click.option("--network", "-n", required=True, help="Target network (networks.* in dorch.yaml)")
@click.option("--tags", "-t", multiple=True, help="Deploy units with these tags (comma-separated or repeated)")
@click.option("--only", "-u", multiple=True, help="Deploy only these units (and their dependencies)")
@click.option("--force", is_flag=True, help="Redeploy units that already have a record")
@click.option("--force-unit", multiple=True, help="Redeploy this unit even if recorded")
@click.option("--dry-run", is_flag=True, help="Rehearse against a throw-away store; submit nothing")
@click.option("--track-calls", is_flag=True, help="Record call units and skip them on later runs")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--json", "as_json", is_flag=True, help="Print the run report as JSON")
@click.pass_context
def deploy(ctx, network, tags, only, force, force_unit, dry_run, track_calls, verbose, as_json):
    """
    Deploy selected units to a network.

    Units with a deployment record on the network are skipped unless forced.
    Dependencies of selected units are always included.

    Examples:

        dorch deploy --network localhost

        dorch deploy --network rinkeby --tags ASTOEnergyContracts

        dorch deploy --network rinkeby --only ControllerInit --dry-run

        dorch deploy --network rinkeby --force-unit Converter
    """
    config = _load(ctx)
    setup_logging(
        config.get_log_file_path(),
        log_level="DEBUG" if verbose else config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console() and not as_json,
    )

    try:
        network_config = config.get_network(network)
        registry = _load_registry(config)
        selection = Selection.parse(names=only, tags=tags)
        for name in Selection.parse(names=force_unit).names:
            registry.get(name)
        order = resolve(registry, select(registry, selection))
        accounts = config.named_accounts(network)
    except (ResolutionError, UnitValidationError, ConfigError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_UNPLANNABLE)

    store = _store(config)
    if dry_run:
        store = _rehearsal_store(store, network)
        client = DryRunChainClient(network=network)
        if not as_json:
            print_banner(f"DRY RUN: {network} (nothing is submitted)")
    else:
        try:
            client = Web3ChainClient.from_network_config(network_config)
        except ConfigError as e:
            click.echo(f"✗ {e}", err=True)
            raise SystemExit(EXIT_UNPLANNABLE)
        if not as_json:
            print_banner(f"Deploying to {network}")
            if network_config.live:
                print_warning(f"{network} is a live network")

    if not as_json:
        print_info(f"{selection.describe()}: {len(order)} unit(s) in order: {', '.join(order)}")

    executor = Executor(
        store=store,
        client=client,
        network=network,
        accounts=accounts,
        force=force,
        force_units=Selection.parse(names=force_unit).names,
        track_calls=track_calls or config.should_track_calls(),
        default_timeout_s=network_config.timeout_s,
    )

    def _interrupt(signum, frame):
        executor.abort()
        print_warning("Interrupt received; stopping after the current unit")

    previous_handler = signal.signal(signal.SIGINT, _interrupt)
    try:
        report = executor.execute(registry, order)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        raise SystemExit(report.exit_code)

    console.print(report_table(report))
    counts = report.counts()
    duration = format_duration((report.duration_ms or 0) / 1000)
    summary = (
        f"{counts['succeeded']} succeeded, {counts['skipped']} skipped, "
        f"{counts['failed']} failed, {counts['pending']} pending in {duration}"
    )
    if report.success:
        print_success(summary)
    else:
        if report.aborted:
            print_warning("Run aborted by operator")
        for outcome in report.failed_units:
            print_error(f"{outcome.unit_name}: {outcome.error['kind']}: {outcome.error['message']}")
        print_error(summary)
        print_info("Re-run the same command to resume; recorded units are skipped")
    raise SystemExit(report.exit_code)


@main.command("plan")
@click.option("--network", "-n", required=True, help="Target network")
@click.option("--tags", "-t", multiple=True, help="Plan units with these tags")
@click.option("--only", "-u", multiple=True, help="Plan only these units (and their dependencies)")
@click.option("--force", is_flag=True, help="Preview a forced redeploy")
@click.option("--track-calls", is_flag=True, help="Preview with call tracking enabled")
@click.pass_context
def plan(ctx, network, tags, only, force, track_calls):
    """
    Show the resolved execution order without touching the chain.

    Examples:

        dorch plan --network rinkeby

        dorch plan --network rinkeby --only ControllerInit
    """
    config = _load(ctx)
    try:
        config.get_network(network)
        registry = _load_registry(config)
        order = resolve(registry, select(registry, Selection.parse(names=only, tags=tags)))
    except (ResolutionError, UnitValidationError, ConfigError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_UNPLANNABLE)

    executor = Executor(
        store=_store(config),
        client=DryRunChainClient(network=network),
        network=network,
        force=force,
        track_calls=track_calls or config.should_track_calls(),
    )

    table = Table(title=f"Plan for {network}")
    table.add_column("#", justify="right")
    table.add_column("Level", justify="right")
    table.add_column("Unit", style="bold")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Depends on")
    for i, planned in enumerate(executor.plan(registry, order), start=1):
        unit = planned.unit
        if unit.is_deploy:
            action = f"deploy {unit.action.contract_name}"
        else:
            action = f"call {unit.action.target}.{unit.action.method}"
        style = "green" if planned.will_run else "cyan"
        table.add_row(
            str(i),
            str(planned.level),
            unit.name,
            action,
            f"[{style}]{planned.summary}[/{style}]",
            ", ".join(unit.effective_dependencies),
        )
    console.print(table)


# =============================================================================
# Units
# =============================================================================


@main.group("units")
def units_group():
    """Inspect unit definitions."""
    pass


@units_group.command("list")
@click.option("--tag", help="Only units with this tag")
@click.pass_context
def list_units(ctx, tag):
    """List units in declaration order."""
    config = _load(ctx)
    try:
        registry = _load_registry(config)
    except (UnitValidationError, ResolutionError, ConfigError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_UNPLANNABLE)

    units = registry.with_tag(tag) if tag else registry.units()
    if not units:
        click.echo(f"No units tagged '{tag}'." if tag else "No units defined.")
        return

    for unit in units:
        kind = unit.action.kind
        tags = ",".join(sorted(unit.tags))
        click.echo(f"  {unit.name:<28} {kind:<7} [{tags}]")


@units_group.command("show")
@click.argument("name")
@click.pass_context
def show_unit(ctx, name):
    """Show a unit definition and its effective dependencies."""
    config = _load(ctx)
    try:
        registry = _load_registry(config)
        unit = registry.get(name)
    except (UnitValidationError, ResolutionError, ConfigError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_UNPLANNABLE)

    click.echo(f"Unit: {unit.name}")
    if unit.description:
        click.echo(f"Description: {unit.description}")
    click.echo(f"Depends on: {', '.join(unit.effective_dependencies) or '-'}")
    click.echo()
    click.echo(yaml.safe_dump(unit.to_dict(), sort_keys=False).rstrip())


# =============================================================================
# Records
# =============================================================================


@main.group("records")
def records_group():
    """Inspect and manage deployment records."""
    pass


@records_group.command("list")
@click.option("--network", "-n", required=True, help="Network to list")
@click.pass_context
def list_records(ctx, network):
    """List recorded deployments and tracked calls for a network."""
    config = _load(ctx)
    try:
        records = _store(config).list_records(network)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_UNPLANNABLE)

    if not records:
        click.echo(f"No records for {network}.")
        return

    table = Table(title=f"Records on {network}")
    table.add_column("Unit", style="bold")
    table.add_column("Kind")
    table.add_column("Contract / Method")
    table.add_column("Address")
    table.add_column("Transaction")
    for record in records:
        if record.kind == "call":
            table.add_row(record.unit_name, "call", record.method, record.target_address, record.transaction_hash)
        else:
            table.add_row(record.unit_name, "deploy", record.contract_name, record.address, record.transaction_hash)
    console.print(table)


@records_group.command("forget")
@click.option("--network", "-n", required=True, help="Network to remove the record from")
@click.argument("unit")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def forget_record(ctx, network, unit, yes):
    """
    Remove a unit's record so the next deploy runs it again.

    The deployed contract is not touched; only the local record is removed.
    """
    config = _load(ctx)
    store = _store(config)
    try:
        record = store.get_record(unit, network)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_UNPLANNABLE)

    if record is None:
        click.echo(f"✗ No record for {unit} on {network}", err=True)
        raise SystemExit(EXIT_FAILED)

    if not yes:
        click.confirm(f"Forget {unit} on {network}?", abort=True)

    store.delete_record(unit, network)
    click.echo(f"✓ Forgot {unit} on {network}")


# =============================================================================
# Init
# =============================================================================


STARTER_CONFIG = {
    "project": {"name": "my-contracts"},
    "paths": {
        "definitions": "deploy",
        "artifacts": "artifacts",
        "deployments": "deployments",
    },
    "networks": {
        "localhost": {
            "url": "http://127.0.0.1:8545",
            "timeout_s": 60,
        },
        "rinkeby": {
            "url": "${RINKEBY_URL}",
            "chain_id": 4,
            "accounts": ["${DEPLOYER_PRIVATE_KEY}", "${AGENT_PRIVATE_KEY:-}"],
            "gas": {"max_fee_gwei": 50, "priority_fee_gwei": 2, "gas_limit_multiplier": 1.2},
            "live": True,
        },
    },
    "accounts": {
        "deployer": 0,
        "agent": {"default": "${AGENT_ADDRESS:-0}"},
    },
    "logging": {
        "level": "INFO",
        "format": "pretty",
        "output": "logs/dorch-{date}.log",
        "console": True,
    },
    "behavior": {"track_calls": False},
}

STARTER_ENV = """\
# RPC endpoint and signer keys for live networks
RINKEBY_URL=
DEPLOYER_PRIVATE_KEY=
AGENT_PRIVATE_KEY=
AGENT_ADDRESS=
"""


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(ctx, force):
    """Write a starter dorch.yaml, .env template and unit definitions."""
    cfg_path = ctx.obj.get("config_path") or default_config_path()
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(EXIT_FAILED)

    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(yaml.safe_dump(STARTER_CONFIG, sort_keys=False))

    env_path = cfg_path.parent / ".env"
    if not env_path.exists():
        env_path.write_text(STARTER_ENV)

    definitions_dir = cfg_path.parent / "deploy"
    if not definitions_dir.exists():
        shutil.copytree(BUNDLED_DEFINITIONS_DIR, definitions_dir)

    click.echo(f"✓ Initialized dorch config at {cfg_path}")
    click.echo(f"  Unit definitions: {definitions_dir}")
    click.echo("  Fill in .env before deploying to a live network.")


if __name__ == "__main__":
    main()
