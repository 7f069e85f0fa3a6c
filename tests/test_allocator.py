"""Tests for the Docker-backed address allocator."""

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from ipocalypse.docker.allocator import (
    DockerAddressAllocator,
    assignable_addresses,
    endpoint_address,
)
from ipocalypse.docker.naming import LABEL_MANAGED
from ipocalypse.exceptions import (
    AddressExhaustedError,
    AllocatorError,
    AllocatorTeardownError,
    EndpointProvisionError,
)
from ipocalypse.models.lease import WorkloadReference

NETWORK = "ipocalypse_net"
CONTAINER_ID = "3f2a9c1b7d4e" + "a" * 52


def inspect_attrs(address=""):
    return {"NetworkSettings": {"Networks": {NETWORK: {"IPAddress": address}}}}


def ipam_network(attached, subnet="10.0.0.0/29", gateway="10.0.0.1"):
    network = MagicMock()
    network.attrs = {
        "IPAM": {"Config": [{"Subnet": subnet, "Gateway": gateway}]},
        "Containers": {f"c{i}": {} for i in range(attached)},
    }
    return network


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def allocator(client):
    manager = MagicMock()
    manager.client = client
    return DockerAddressAllocator(manager, network_name=NETWORK, poll_interval=0.01)


@pytest.fixture
def workload():
    return WorkloadReference(name="ipocalypse_0:latest", context_dir="/tmp/ipocalypse_0")


class TestEndpointAddress:
    def test_reads_address_on_network(self):
        assert endpoint_address(inspect_attrs("10.0.0.7"), NETWORK) == "10.0.0.7"

    def test_missing_network_or_empty_address(self):
        assert endpoint_address(inspect_attrs(""), NETWORK) is None
        assert endpoint_address(inspect_attrs("10.0.0.7"), "bridge") is None
        assert endpoint_address({}, NETWORK) is None


class TestProvision:
    def test_runs_labelled_container_on_network(self, allocator, client, workload):
        client.containers.run.return_value = MagicMock(id=CONTAINER_ID)

        assert allocator.provision(workload) == CONTAINER_ID

        args, kwargs = client.containers.run.call_args
        assert args == ("ipocalypse_0:latest", ["sh", "-c", "dhclient eth0 && sleep 3600"])
        assert kwargs["detach"] is True
        assert kwargs["network"] == NETWORK
        assert kwargs["cap_add"] == ["NET_ADMIN"]
        assert kwargs["labels"][LABEL_MANAGED] == "true"

    def test_docker_error_is_retryable(self, allocator, client, workload):
        client.containers.run.side_effect = APIError("image not found")
        client.networks.get.return_value = ipam_network(attached=3)

        with pytest.raises(EndpointProvisionError) as exc_info:
            allocator.provision(workload)

        assert isinstance(exc_info.value.__cause__, APIError)

    def test_failed_start_on_full_network_is_exhaustion(self, allocator, client, workload):
        client.containers.run.side_effect = APIError("no available IPv4 addresses")
        client.networks.get.return_value = ipam_network(attached=5)

        with pytest.raises(AddressExhaustedError) as exc_info:
            allocator.provision(workload)

        assert exc_info.value.endpoint_id is None
        assert "5/5" in str(exc_info.value)
        client.networks.get.assert_called_once_with(NETWORK)

    def test_uninspectable_network_stays_retryable(self, allocator, client, workload):
        client.containers.run.side_effect = APIError("daemon restarting")
        client.networks.get.side_effect = APIError("daemon restarting")

        with pytest.raises(EndpointProvisionError):
            allocator.provision(workload)


@pytest.mark.parametrize(
    "pool,expected",
    [
        ({"Subnet": "10.0.0.0/24", "Gateway": "10.0.0.1"}, 253),
        ({"Subnet": "10.0.0.0/24", "IPRange": "10.0.0.128/28"}, 16),
        (
            {
                "Subnet": "10.0.0.0/24",
                "IPRange": "10.0.0.0/28",
                "Gateway": "10.0.0.1",
                "AuxiliaryAddresses": {"host": "10.0.0.2"},
            },
            13,
        ),
    ],
)
def test_assignable_addresses(pool, expected):
    assert assignable_addresses(pool) == expected


class TestAwaitAddress:
    def test_returns_address_once_assigned(self, allocator, client):
        pending = MagicMock(attrs=inspect_attrs(""))
        leased = MagicMock(attrs=inspect_attrs("10.0.0.9"))
        client.containers.get.side_effect = [pending, pending, leased]

        assert allocator.await_address(CONTAINER_ID, timeout=5) == "10.0.0.9"
        assert client.containers.get.call_count == 3

    def test_timeout_means_exhausted(self, allocator, client):
        client.containers.get.return_value = MagicMock(attrs=inspect_attrs(""))

        with pytest.raises(AddressExhaustedError) as exc_info:
            allocator.await_address(CONTAINER_ID, timeout=0.05)

        assert exc_info.value.endpoint_id == CONTAINER_ID
        assert "3f2a9c1b7d4e" in str(exc_info.value)

    def test_zero_timeout_checks_once(self, allocator, client):
        client.containers.get.return_value = MagicMock(attrs=inspect_attrs(""))

        with pytest.raises(AddressExhaustedError):
            allocator.await_address(CONTAINER_ID, timeout=0)
        assert client.containers.get.call_count == 1

    def test_vanished_container_is_retryable(self, allocator, client):
        client.containers.get.side_effect = NotFound("No such container")

        with pytest.raises(EndpointProvisionError, match="disappeared"):
            allocator.await_address(CONTAINER_ID, timeout=1)


class TestRelease:
    def test_force_removes(self, allocator, client):
        container = MagicMock()
        client.containers.get.return_value = container

        allocator.release(CONTAINER_ID)

        container.remove.assert_called_once_with(force=True)

    def test_missing_container_is_fine(self, allocator, client):
        client.containers.get.side_effect = NotFound("gone")
        allocator.release(CONTAINER_ID)

    def test_docker_error_raises_teardown_error(self, allocator, client):
        client.containers.get.return_value.remove.side_effect = APIError("device busy")

        with pytest.raises(AllocatorTeardownError) as exc_info:
            allocator.release(CONTAINER_ID)

        assert exc_info.value.endpoint_id == CONTAINER_ID


def test_cleanup_all_removes_managed_containers(allocator, client):
    gone = MagicMock()
    gone.remove.side_effect = NotFound("gone")
    stuck = MagicMock(short_id="deadbeef")
    stuck.remove.side_effect = APIError("busy")
    client.containers.list.return_value = [MagicMock(), gone, stuck, MagicMock()]

    assert allocator.cleanup_all() == 2
    client.containers.list.assert_called_once_with(
        all=True, filters={"label": f"{LABEL_MANAGED}=true"}
    )


def test_cleanup_all_list_failure_is_typed(allocator, client):
    client.containers.list.side_effect = APIError("Cannot connect to the Docker daemon")

    with pytest.raises(AllocatorError, match="list endpoint containers"):
        allocator.cleanup_all()
