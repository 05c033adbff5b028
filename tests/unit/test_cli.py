"""Unit tests for the CLI commands."""

from unittest.mock import MagicMock, patch

import yaml
from rich.console import Console
from typer.testing import CliRunner

from evroc_provider import conditions
from evroc_provider.cli import app
from evroc_provider.models import condition as ct
from evroc_provider.models.machine import MachineAddress

from conftest import FakeObjectStore, make_evroc_cluster, make_evroc_machine

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "evroc-provider version 0.1.0" in result.stdout


def test_run_help():
    result = runner.invoke(app, ["run", "--help"])

    assert result.exit_code == 0
    assert "--config" in result.stdout
    assert "--namespace" in result.stdout
    assert "--workers" in result.stdout


def test_init_config_writes_defaults(tmp_path):
    path = tmp_path / "provider.yaml"

    result = runner.invoke(app, ["init-config", str(path)])

    assert result.exit_code == 0
    assert yaml.safe_load(path.read_text())["workers"] == 4


def test_init_config_refuses_overwrite(tmp_path):
    path = tmp_path / "provider.yaml"
    path.write_text("workers: 2\n")

    result = runner.invoke(app, ["init-config", str(path)])

    assert result.exit_code == 1
    assert "already exists" in result.stdout
    assert path.read_text() == "workers: 2\n"


def test_init_config_force(tmp_path):
    path = tmp_path / "provider.yaml"
    path.write_text("workers: 2\n")

    result = runner.invoke(app, ["init-config", str(path), "--force"])

    assert result.exit_code == 0
    assert yaml.safe_load(path.read_text())["workers"] == 4


def test_run_missing_config_file(tmp_path):
    result = runner.invoke(app, ["run", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "Config file not found" in result.stdout


def test_run_invalid_worker_count():
    result = runner.invoke(app, ["run", "--workers", "0"])

    assert result.exit_code == 1
    assert "Configuration Error" in result.stdout


def test_run_no_kubeconfig(tmp_path):
    result = runner.invoke(app, ["run", "--kubeconfig", str(tmp_path / "nonexistent")])

    assert result.exit_code == 1
    assert "kubeconfig" in result.stdout.lower()


def test_run_starts_and_stops_manager():
    manager = MagicMock()
    with (
        patch("evroc_provider.cli.build_store", return_value=MagicMock()),
        patch("evroc_provider.manager.Manager", return_value=manager) as manager_cls,
        patch("evroc_provider.cli.signal.signal"),
    ):
        result = runner.invoke(app, ["run", "--workers", "2", "--namespace", "capi"])

    assert result.exit_code == 0
    config = manager_cls.call_args.args[0]
    assert config.workers == 2
    assert config.namespace == "capi"
    assert len(manager_cls.call_args.args[2]) == 2
    manager.start.assert_called_once()
    manager.wait.assert_called_once()
    manager.stop.assert_called()


def test_status_no_kubeconfig(tmp_path):
    """Test that status fails gracefully without kubeconfig."""
    result = runner.invoke(app, ["status", "--kubeconfig", str(tmp_path / "nonexistent")])

    assert result.exit_code == 1
    assert "kubeconfig" in result.stdout.lower()


def test_status_lists_objects():
    store = FakeObjectStore()
    cluster = make_evroc_cluster()
    cluster.status.ready = True
    cluster.spec.control_plane_endpoint.host = "203.0.113.10"
    cluster.spec.control_plane_endpoint.port = 6443
    store.add(cluster)
    machine = make_evroc_machine()
    machine.status.instance_state = "Provisioning"
    machine.status.addresses = [MachineAddress(type="InternalIP", address="10.0.0.5")]
    conditions.mark_false(machine, ct.READY, "VMNotReady", ct.SEVERITY_INFO, "Waiting for VM")
    store.add(machine)

    with (
        patch("evroc_provider.cli.build_store", return_value=store),
        patch("evroc_provider.cli.console", Console(width=200)),
    ):
        result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "test-cluster" in result.stdout
    assert "203.0.113.10:6443" in result.stdout
    assert "test-machine" in result.stdout
    assert "Provisioning" in result.stdout
    assert "VMNotReady" in result.stdout
    assert "Ready Machines: 0/1" in result.stdout


def test_status_empty():
    with patch("evroc_provider.cli.build_store", return_value=FakeObjectStore()):
        result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "No EvrocClusters or EvrocMachines found" in result.stdout
