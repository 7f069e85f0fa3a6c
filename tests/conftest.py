"""Shared fixtures and test doubles."""

import threading

import pytest

from ipocalypse.exceptions import AddressExhaustedError, EndpointProvisionError
from ipocalypse.models.lease import WorkloadReference
from ipocalypse.network.host import RouteEntry


class FakeHostNetwork:
    """In-memory HostNetwork backend."""

    def __init__(
        self,
        default_routes=None,
        up_links=None,
        addresses=None,
        interface_routes=None,
    ):
        self._default_routes = default_routes or []
        self._up_links = up_links or []
        self._addresses = addresses or {}
        self._interface_routes = interface_routes or {}

    def default_routes(self):
        return list(self._default_routes)

    def interface_routes(self, interface):
        return list(self._interface_routes.get(interface, []))

    def up_links(self):
        return list(self._up_links)

    def ipv4_addresses(self, interface):
        return list(self._addresses.get(interface, []))


class StubAllocator:
    """
    Thread-safe AddressAllocator double.

    ``leases`` endpoints get an address, after which every await_address
    raises AddressExhaustedError. ``provision_error`` makes every provision
    fail instead.
    """

    def __init__(self, leases=0, provision_error=None, release_error=None):
        self.lease_budget = leases
        self.provision_error = provision_error
        self.release_error = release_error

        self._lock = threading.Lock()
        self.provisioned = []
        self.released = []
        self.exhausted = []
        self.images = []

    def provision(self, workload):
        with self._lock:
            self.images.append(workload.name)
            if self.provision_error is not None:
                raise self.provision_error
            endpoint_id = f"endpoint-{len(self.provisioned):04d}" + "0" * 52
            self.provisioned.append(endpoint_id)
            return endpoint_id

    def await_address(self, endpoint_id, timeout):
        with self._lock:
            if self.lease_budget > 0:
                self.lease_budget -= 1
                return f"10.0.0.{len(self.provisioned) + 1}"
            self.exhausted.append(endpoint_id)
        raise AddressExhaustedError(endpoint_id, timeout)

    def release(self, endpoint_id):
        with self._lock:
            self.released.append(endpoint_id)
        if self.release_error is not None:
            raise self.release_error


@pytest.fixture
def images():
    return [
        WorkloadReference(name="ipocalypse_0:latest", context_dir="/tmp/a"),
        WorkloadReference(name="ipocalypse_1:latest", context_dir="/tmp/b"),
    ]


@pytest.fixture
def default_route_host():
    return FakeHostNetwork(
        default_routes=[
            RouteEntry(destination="default", gateway="10.0.0.1", interface="eth0")
        ],
        up_links=["lo", "eth0"],
        addresses={"eth0": ["10.0.0.42/24"]},
    )


@pytest.fixture
def failing_allocator():
    return StubAllocator(provision_error=EndpointProvisionError("daemon hiccup"))
