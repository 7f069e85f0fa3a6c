"""Tests for the ipocalypse CLI."""

from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from conftest import StubAllocator
from ipocalypse.cli.main import app
from ipocalypse.config import config
from ipocalypse.exceptions import AllocatorError

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("ipocalypse.cli.main.configure_logging"):
        yield


@pytest.fixture
def host(default_route_host):
    with patch("ipocalypse.cli.main.get_host_network", return_value=default_route_host):
        yield default_route_host


@pytest.fixture
def docker_manager():
    with patch("ipocalypse.cli.main.DockerManager") as manager_cls:
        manager_cls.return_value.client.images.build.return_value = (MagicMock(), [])
        yield manager_cls.return_value


@pytest.fixture
def provisioner():
    with patch("ipocalypse.cli.main.MacvlanProvisioner") as provisioner_cls:
        yield provisioner_cls.return_value


@pytest.fixture
def image_dir(tmp_path):
    path = tmp_path / "ipocalypse_basic"
    path.mkdir()
    (path / "Dockerfile").write_text("FROM ubuntu:22.04\n")
    return path


class TestRun:
    def test_requires_image_directories(self):
        result = runner.invoke(app, ["run"])

        assert result.exit_code == 1
        assert "Provide at least one" in result.output

    def test_rejects_zero_workers(self, image_dir):
        result = runner.invoke(app, ["run", "-d", str(image_dir), "--workers", "0"])

        assert result.exit_code == 1
        assert "--workers" in result.output

    def test_manual_network_requires_all_values(self, image_dir, host):
        result = runner.invoke(
            app, ["run", "-d", str(image_dir), "--no-auto-network", "--parent", "eth0"]
        )

        assert result.exit_code == 1
        assert "--subnet" in result.output

    def test_leases_until_exhausted(
        self, image_dir, host, docker_manager, provisioner, monkeypatch
    ):
        monkeypatch.setattr(config, "LEASE_INTERVAL", 0)
        allocator = StubAllocator(leases=3)

        with patch("ipocalypse.cli.main.DockerAddressAllocator", return_value=allocator):
            result = runner.invoke(
                app,
                ["run", "-d", str(image_dir), "-w", "2", "--request-timeout", "0"],
            )

        assert result.exit_code == 0, result.output
        assert "3 lease(s)" in result.output
        assert "exhausted" in result.output
        docker_manager.client.images.build.assert_called_once()
        provisioner.setup.assert_called_once()
        assert provisioner.setup.call_args.kwargs == {
            "host_interface": False,
            "internet_access": False,
        }
        assert set(allocator.images) == {"ipocalypse_0:latest"}
        docker_manager.close.assert_called_once()

    def test_internet_flag_creates_host_interface(
        self, image_dir, host, docker_manager, provisioner, monkeypatch
    ):
        monkeypatch.setattr(config, "LEASE_INTERVAL", 0)

        with patch(
            "ipocalypse.cli.main.DockerAddressAllocator", return_value=StubAllocator()
        ):
            result = runner.invoke(
                app,
                ["run", "-d", str(image_dir), "--internet", "--request-timeout", "0"],
            )

        assert result.exit_code == 0, result.output
        assert provisioner.setup.call_args.kwargs == {
            "host_interface": True,
            "internet_access": True,
        }


class TestDetect:
    def test_prints_json(self, host):
        result = runner.invoke(app, ["detect", "--json"])

        assert result.exit_code == 0
        assert '"subnet": "10.0.0.0/24"' in result.output
        assert '"gateway": "10.0.0.1"' in result.output

    def test_detection_failure(self):
        with patch("ipocalypse.cli.main.get_host_network") as get_host:
            get_host.return_value.default_routes.return_value = []
            get_host.return_value.up_links.return_value = []
            get_host.return_value.ipv4_addresses.return_value = []

            result = runner.invoke(app, ["detect"])

        assert result.exit_code == 1
        assert "eth0" in result.output


def test_setup_network(host, docker_manager, provisioner):
    result = runner.invoke(app, ["setup-network", "--internet"])

    assert result.exit_code == 0, result.output
    provisioner.setup.assert_called_once()
    assert provisioner.setup.call_args.kwargs == {
        "host_interface": True,
        "internet_access": True,
    }
    provisioner.close.assert_called_once()


def test_cleanup(docker_manager, provisioner):
    with patch("ipocalypse.cli.main.DockerAddressAllocator") as allocator_cls:
        result = runner.invoke(app, ["cleanup"])

    assert result.exit_code == 0, result.output
    allocator_cls.return_value.cleanup_all.assert_called_once()
    provisioner.teardown.assert_called_once()
    provisioner.close.assert_called_once()


def test_version():
    result = runner.invoke(app, ["version"])
    assert "ipocalypse v" in result.output


def test_cleanup_reports_listing_failure(docker_manager, provisioner):
    with patch("ipocalypse.cli.main.DockerAddressAllocator") as allocator_cls:
        allocator_cls.return_value.cleanup_all.side_effect = AllocatorError(
            "Failed to list endpoint containers: daemon gone"
        )
        result = runner.invoke(app, ["cleanup"])

    assert result.exit_code == 1
    assert "daemon gone" in result.output
