"""Tests for the bundled ASTO energy unit definitions."""

import pytest

from dorch.artifact_store import InMemoryArtifactStore
from dorch.cli import BUNDLED_DEFINITIONS_DIR
from dorch.executor import deploy
from dorch.registry import UnitRegistry
from dorch.resolver import resolve
from dorch.schemas import DeploymentRecord, UnitStatus
from dorch.selector import Selection, select

from conftest import FakeChainClient


MAIN_UNITS = [
    "ASTOToken",
    "LPToken",
    "Controller",
    "StakingStorage",
    "ASTOStorage",
    "LPStorage",
    "Staking",
    "EnergyStorage",
    "Converter",
    "ControllerInit",
    "ConverterAddPeriod",
]

AGENT = "0x" + "b" * 40


@pytest.fixture(scope="module")
def registry():
    return UnitRegistry.from_directory(BUNDLED_DEFINITIONS_DIR)


def test_loads_in_file_order(registry):
    assert registry.names()[:len(MAIN_UNITS)] == MAIN_UNITS
    assert len(registry) == len(MAIN_UNITS) + 10


def test_everything_resolves(registry):
    order = resolve(registry, registry.names())
    assert sorted(order) == sorted(registry.names())


def test_controller_init_pulls_in_modules(registry):
    order = resolve(registry, select(registry, Selection.parse(names=["ControllerInit"])))
    assert order == MAIN_UNITS[:-1]


def test_staking_storage_only_via_init(registry):
    selected = select(registry, Selection.parse(tags=["ASTOEnergyContracts"]))
    assert "StakingStorage" not in selected
    assert resolve(registry, selected) == MAIN_UNITS


def test_test_variant_is_separate(registry):
    order = resolve(registry, select(registry, Selection.parse(tags=["test"])))
    assert all(name.endswith(("Test", "TestInit", "TestAddPeriod")) for name in order)
    assert order[-2:] == ["ControllerTestInit", "ConverterTestAddPeriod"]


def test_full_deploy_wires_controller(registry):
    store = InMemoryArtifactStore()
    client = FakeChainClient()

    report = deploy(
        registry, store, client, "localhost",
        selection=Selection.parse(tags=["ASTOEnergyContracts"]),
        accounts={"deployer": 0, "agent": AGENT},
    )

    assert report.success
    assert [o.status for o in report.outcomes] == [UnitStatus.SUCCEEDED] * len(MAIN_UNITS)

    def address(name):
        record = store.get_record(name, "localhost")
        assert isinstance(record, DeploymentRecord)
        return record.address

    init, add_period = client.calls
    assert init["method"] == "init"
    assert init["address"] == address("Controller")
    assert init["args"] == [
        address(name)
        for name in ("ASTOToken", "ASTOStorage", "LPToken", "LPStorage", "Staking", "Converter", "EnergyStorage")
    ]
    assert add_period["args"] == [[1654560000, 1659744000, 10**18, 136 * 10**16]]

    assert client.deployed_contracts[:3] == ["ASTOTokenTest", "LPTokenTest", "Controller"]
    assert client.deployed_contracts.count("StakingStorage") == 3
    assert client.deployments[3]["args"] == [AGENT, "0xb5c8a0389aaac2def49f1746448499737ff57385"]
    assert client.deployments[4]["args"] == [address("Controller")]


def test_init_runs_once(registry):
    store = InMemoryArtifactStore()
    accounts = {"deployer": 0, "agent": AGENT}
    selection = Selection.parse(names=["ConverterAddPeriod"])
    deploy(registry, store, FakeChainClient(), "localhost", selection=selection, accounts=accounts)

    client = FakeChainClient()
    report = deploy(registry, store, client, "localhost", selection=selection, accounts=accounts)

    assert report.success
    assert client.calls == []
    assert client.deployments == []
