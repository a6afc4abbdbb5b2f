import json
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from dorch.cli import main

from conftest import FakeChainClient


UNITS = {
    "units": [
        {"name": "Token", "deploy": {}, "tags": ["tokens"]},
        {"name": "Storage", "deploy": {"args": ["@unit.Controller"]}},
        {"name": "Controller", "deploy": {"args": ["@account.deployer"]}},
        {
            "name": "Init",
            "call": {
                "target": "Controller",
                "method": "init",
                "args": ["@unit.Token", "@unit.Storage"],
            },
            "dependencies": ["Token", "Storage"],
        },
    ]
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project(tmp_path):
    config = {
        "project": {"name": "test"},
        "networks": {"localhost": {"url": "http://127.0.0.1:8545", "timeout_s": 5}},
        "accounts": {"deployer": 0},
        "logging": {"level": "INFO", "format": "structured", "console": False},
    }
    config_path = tmp_path / "dorch.yaml"
    config_path.write_text(yaml.dump(config))
    (tmp_path / "deploy").mkdir()
    (tmp_path / "deploy" / "units.yaml").write_text(yaml.dump(UNITS, sort_keys=False))
    return tmp_path


def _invoke(runner, project, *args, **kwargs):
    return runner.invoke(main, ["--config", str(project / "dorch.yaml"), *args], **kwargs)


def _record_path(project, unit, network="localhost"):
    return project / "deployments" / network / f"{unit}.json"


def test_missing_config_exits_2(runner, tmp_path):
    result = runner.invoke(main, ["--config", str(tmp_path / "nope.yaml"), "deploy", "-n", "localhost"])
    assert result.exit_code == 2
    assert "not found" in result.output


def test_dry_run_submits_nothing(runner, project):
    with patch("dorch.cli.Web3ChainClient") as web3_client:
        result = _invoke(runner, project, "deploy", "-n", "localhost", "--dry-run")

    assert result.exit_code == 0, result.output
    web3_client.from_network_config.assert_not_called()
    assert not _record_path(project, "Controller").exists()


def test_dry_run_json_report(runner, project):
    result = _invoke(runner, project, "deploy", "-n", "localhost", "--dry-run", "--json")

    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report["success"] is True
    assert [o["unit_name"] for o in report["outcomes"]] == ["Token", "Controller", "Storage", "Init"]
    assert all(o["status"] == "succeeded" for o in report["outcomes"])


def test_deploy_records_and_resumes(runner, project):
    failing = FakeChainClient()
    failing.fail["Storage"] = "revert"
    with patch("dorch.cli.Web3ChainClient") as web3_client:
        web3_client.from_network_config.return_value = failing
        result = _invoke(runner, project, "deploy", "-n", "localhost", "--json")

    assert result.exit_code == 1
    statuses = {o["unit_name"]: o["status"] for o in json.loads(result.output)["outcomes"]}
    assert statuses == {"Token": "succeeded", "Controller": "succeeded", "Storage": "failed", "Init": "pending"}
    assert _record_path(project, "Controller").exists()
    assert not _record_path(project, "Storage").exists()

    healthy = FakeChainClient()
    with patch("dorch.cli.Web3ChainClient") as web3_client:
        web3_client.from_network_config.return_value = healthy
        result = _invoke(runner, project, "deploy", "-n", "localhost")

    assert result.exit_code == 0, result.output
    assert healthy.deployed_contracts == ["Storage"]
    assert [c["method"] for c in healthy.calls] == ["init"]
    controller = json.loads(_record_path(project, "Controller").read_text())
    assert healthy.deployments[0]["args"] == [controller["address"]]


def test_unknown_unit_exits_2(runner, project):
    result = _invoke(runner, project, "deploy", "-n", "localhost", "--only", "Ghost", "--dry-run")
    assert result.exit_code == 2
    assert "Ghost" in result.output


def test_unknown_force_unit_exits_2(runner, project):
    result = _invoke(runner, project, "deploy", "-n", "localhost", "--force-unit", "Ghost", "--dry-run")
    assert result.exit_code == 2


def test_unknown_network_exits_2(runner, project):
    result = _invoke(runner, project, "deploy", "-n", "goerli", "--dry-run")
    assert result.exit_code == 2
    assert "Unknown network: goerli" in result.output


def test_invalid_signer_key_exits_2(runner, project):
    config = yaml.safe_load((project / "dorch.yaml").read_text())
    config["networks"]["live"] = {"url": "http://127.0.0.1:8545", "accounts": ["0xnotakey"]}
    (project / "dorch.yaml").write_text(yaml.dump(config))

    result = _invoke(runner, project, "deploy", "-n", "live")
    assert result.exit_code == 2
    assert "Network live: Invalid private key at accounts[0]" in result.output
    assert "notakey" not in result.output


def test_cycle_exits_2(runner, project):
    cyclic = {"units": [
        {"name": "A", "deploy": {}, "dependencies": ["B"]},
        {"name": "B", "deploy": {"args": ["@unit.A"]}},
    ]}
    (project / "deploy" / "units.yaml").write_text(yaml.dump(cyclic))
    result = _invoke(runner, project, "deploy", "-n", "localhost", "--dry-run")
    assert result.exit_code == 2
    assert "A" in result.output


def test_unmatched_tag_exits_2(runner, project):
    result = _invoke(runner, project, "deploy", "-n", "localhost", "--tags", "nothing", "--dry-run")
    assert result.exit_code == 2


def test_plan(runner, project):
    result = _invoke(runner, project, "plan", "-n", "localhost", "--only", "Storage")
    assert result.exit_code == 0, result.output
    assert "Plan for localhost" in result.output
    assert not _record_path(project, "Storage").exists()


def test_units_list(runner, project):
    result = _invoke(runner, project, "units", "list")
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert [line.split()[0] for line in lines] == ["Token", "Storage", "Controller", "Init"]
    assert "call" in lines[3]

    result = _invoke(runner, project, "units", "list", "--tag", "tokens")
    assert result.output.split() == ["Token", "deploy", "[tokens]"]

    result = _invoke(runner, project, "units", "list", "--tag", "nothing")
    assert "No units tagged 'nothing'." in result.output


def test_units_show(runner, project):
    result = _invoke(runner, project, "units", "show", "Init")
    assert result.exit_code == 0
    assert "Unit: Init" in result.output
    assert "Depends on: Token, Storage, Controller" in result.output

    result = _invoke(runner, project, "units", "show", "Ghost")
    assert result.exit_code == 2


def _deploy_all(runner, project):
    with patch("dorch.cli.Web3ChainClient") as web3_client:
        web3_client.from_network_config.return_value = FakeChainClient()
        result = _invoke(runner, project, "deploy", "-n", "localhost", "--json")
    assert result.exit_code == 0, result.output


def test_records_list(runner, project):
    result = _invoke(runner, project, "records", "list", "-n", "localhost")
    assert result.exit_code == 0
    assert "No records for localhost." in result.output

    _deploy_all(runner, project)
    result = _invoke(runner, project, "records", "list", "-n", "localhost")
    assert result.exit_code == 0
    assert "Records on localhost" in result.output


def test_records_forget(runner, project):
    _deploy_all(runner, project)

    result = _invoke(runner, project, "records", "forget", "-n", "localhost", "Controller", input="n\n")
    assert result.exit_code == 1
    assert _record_path(project, "Controller").exists()

    result = _invoke(runner, project, "records", "forget", "-n", "localhost", "Controller", "--yes")
    assert result.exit_code == 0
    assert "Forgot Controller on localhost" in result.output
    assert not _record_path(project, "Controller").exists()

    result = _invoke(runner, project, "records", "forget", "-n", "localhost", "Controller", "--yes")
    assert result.exit_code == 1
    assert "No record for Controller" in result.output


def test_init_creates_files(runner, tmp_path):
    config_path = tmp_path / "new" / "dorch.yaml"
    result = runner.invoke(main, ["--config", str(config_path), "init"])

    assert result.exit_code == 0, result.output
    assert "Initialized dorch config" in result.output
    assert (tmp_path / "new" / ".env").exists()
    assert (tmp_path / "new" / "deploy" / "01_controller.yaml").exists()
    cfg = yaml.safe_load(config_path.read_text())
    assert "localhost" in cfg["networks"]


def test_init_does_not_overwrite_without_force(runner, tmp_path):
    config_path = tmp_path / "dorch.yaml"
    config_path.write_text("existing: true")

    result = runner.invoke(main, ["--config", str(config_path), "init"])
    assert result.exit_code == 1
    assert "Config already exists" in result.output
    assert config_path.read_text() == "existing: true"

    result = runner.invoke(main, ["--config", str(config_path), "init", "--force"])
    assert result.exit_code == 0
    assert "project" in yaml.safe_load(config_path.read_text())


def test_init_then_plan_bundled_units(runner, tmp_path, monkeypatch):
    # keep the generated .env from leaking into os.environ
    for var in ("RINKEBY_URL", "DEPLOYER_PRIVATE_KEY", "AGENT_PRIVATE_KEY", "AGENT_ADDRESS"):
        monkeypatch.setenv(var, "")
    config_path = tmp_path / "dorch.yaml"
    runner.invoke(main, ["--config", str(config_path), "init"])

    result = runner.invoke(main, ["--config", str(config_path), "units", "list", "--tag", "ControllerInit"])
    assert result.exit_code == 0, result.output
    assert [line.split()[0] for line in result.output.splitlines()] == ["ControllerInit", "ConverterAddPeriod"]
