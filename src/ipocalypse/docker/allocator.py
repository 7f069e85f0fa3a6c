"""
Docker-backed address allocator.

Each endpoint is one container attached to the macvlan network. Docker
IPAM assigns its address on start; the allocator then watches the
container's network settings until the address shows up. A start that
fails while every assignable address is attached counts as exhaustion.

Contract consumed by the worker pool:
    provision(ref)               -> endpoint_id   (EndpointProvisionError,
                                                   AddressExhaustedError)
    await_address(id, timeout)   -> address       (AddressExhaustedError)
    release(id)                  -> None          (AllocatorTeardownError)

All methods block; the pool runs them in worker threads.
"""

from __future__ import annotations

import ipaddress
import time

from docker.errors import DockerException, NotFound

from ipocalypse.config import config
from ipocalypse.docker.client import DockerManager
from ipocalypse.docker.naming import make_labels, managed_filter
from ipocalypse.exceptions import (
    AddressExhaustedError,
    AllocatorError,
    AllocatorTeardownError,
    EndpointProvisionError,
)
from ipocalypse.models.lease import WorkloadReference
from ipocalypse.utils.logger import get_logger

log = get_logger(__name__)


def endpoint_address(attrs: dict, network_name: str) -> str | None:
    """Read a container's IPv4 address on a network from its inspect data."""
    networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
    endpoint = networks.get(network_name) or {}
    return endpoint.get("IPAddress") or None


def assignable_addresses(ipam_pool: dict) -> int:
    """
    Number of addresses Docker IPAM can hand out from one pool config.

    The pool's IPRange (or the whole subnet) minus the network and
    broadcast addresses, the gateway and any auxiliary addresses.

    Example:
        {"Subnet": "10.0.0.0/24", "Gateway": "10.0.0.1"} -> 253
    """
    subnet = ipaddress.ip_network(ipam_pool["Subnet"], strict=False)
    pool = ipaddress.ip_network(
        ipam_pool.get("IPRange") or ipam_pool["Subnet"], strict=False
    )

    reserved = set()
    if subnet.prefixlen < 31:
        reserved.update((subnet.network_address, subnet.broadcast_address))
    if ipam_pool.get("Gateway"):
        reserved.add(ipaddress.ip_address(ipam_pool["Gateway"]))
    for aux in (ipam_pool.get("AuxiliaryAddresses") or {}).values():
        reserved.add(ipaddress.ip_address(aux))

    return max(pool.num_addresses - sum(1 for ip in reserved if ip in pool), 0)


class DockerAddressAllocator:
    """
    Provisions endpoint containers on a Docker network.

    Attributes:
        client: docker-py client.
        network_name: Docker network endpoints attach to.
        command: Command each endpoint container runs.
        poll_interval: Seconds between address checks.
    """

    def __init__(
        self,
        docker_manager: DockerManager,
        network_name: str | None = None,
        command: list[str] | None = None,
        poll_interval: float | None = None,
    ):
        self.client = docker_manager.client
        self.network_name = network_name or config.NETWORK_NAME
        self.command = command or list(config.ENDPOINT_COMMAND)
        self.poll_interval = (
            poll_interval if poll_interval is not None else config.ADDRESS_POLL_INTERVAL
        )

    def provision(self, workload: WorkloadReference) -> str:
        """
        Create and start one endpoint container.

        Docker IPAM assigns the address when the container starts, so a full
        network shows up here as a failed start rather than as a timeout.
        When the launch fails and the network's assignable addresses are
        all attached, the failure is reported as exhaustion.

        Returns:
            Container ID.

        Raises:
            AddressExhaustedError: If the launch failed on a full network.
            EndpointProvisionError: If Docker refuses to create or start it
                for any other reason.
        """
        try:
            container = self.client.containers.run(
                workload.name,
                self.command,
                detach=True,
                network=self.network_name,
                labels=make_labels(workload.name),
                cap_add=list(config.ENDPOINT_CAPABILITIES),
            )
        except DockerException as e:
            usage = self.network_usage()
            if usage is not None and usage[0] >= usage[1]:
                attached, capacity = usage
                raise AddressExhaustedError(
                    None,
                    message=(
                        f"Network {self.network_name} has no free addresses "
                        f"({attached}/{capacity} attached)"
                    ),
                ) from e
            raise EndpointProvisionError(
                f"Failed to launch container from {workload.name}: {e}"
            ) from e

        log.debug(f"Started endpoint {container.id[:12]} from {workload.name}")
        return container.id

    def await_address(self, endpoint_id: str, timeout: float) -> str:
        """
        Wait until the endpoint reports an address on the network.

        Raises:
            AddressExhaustedError: If no address appeared within ``timeout``.
            EndpointProvisionError: If the container vanished or could not be
                inspected.
        """
        deadline = time.monotonic() + timeout
        while True:
            try:
                container = self.client.containers.get(endpoint_id)
            except NotFound as e:
                raise EndpointProvisionError(
                    f"Endpoint {endpoint_id[:12]} disappeared", endpoint_id
                ) from e
            except DockerException as e:
                raise EndpointProvisionError(
                    f"Failed to inspect endpoint {endpoint_id[:12]}: {e}", endpoint_id
                ) from e

            address = endpoint_address(container.attrs, self.network_name)
            if address:
                return address

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AddressExhaustedError(endpoint_id, timeout)
            time.sleep(min(self.poll_interval, remaining))

    def release(self, endpoint_id: str) -> None:
        """
        Force-remove an endpoint container. A missing container is fine.

        Raises:
            AllocatorTeardownError: If Docker fails to remove it.
        """
        try:
            self.client.containers.get(endpoint_id).remove(force=True)
            log.debug(f"Released endpoint {endpoint_id[:12]}")
        except NotFound:
            log.debug(f"Endpoint {endpoint_id[:12]} already gone")
        except DockerException as e:
            raise AllocatorTeardownError(str(e), endpoint_id) from e

    def network_usage(self) -> tuple[int, int] | None:
        """
        Attached endpoints and assignable addresses on the network.

        Returns:
            (attached, capacity), or None if the network cannot be inspected
            or has no IPAM subnet.
        """
        try:
            network = self.client.networks.get(self.network_name)
        except DockerException as e:
            log.debug(f"Cannot inspect network {self.network_name}: {e}")
            return None

        ipam_configs = (network.attrs.get("IPAM") or {}).get("Config") or []
        if not ipam_configs or not ipam_configs[0].get("Subnet"):
            return None

        attached = len(network.attrs.get("Containers") or {})
        capacity = sum(
            assignable_addresses(pool) for pool in ipam_configs if pool.get("Subnet")
        )
        return attached, capacity

    def cleanup_all(self) -> int:
        """
        Remove every endpoint container left by any run.

        Returns:
            Number of containers removed.

        Raises:
            AllocatorError: If the endpoint containers cannot be listed.
        """
        try:
            containers = self.client.containers.list(all=True, filters=managed_filter())
        except DockerException as e:
            raise AllocatorError(f"Failed to list endpoint containers: {e}") from e

        removed = 0
        for container in containers:
            try:
                container.remove(force=True)
                removed += 1
            except NotFound:
                continue
            except DockerException as e:
                log.warning(f"Failed to remove endpoint {container.short_id}: {e}")
        log.info(f"Removed {removed} endpoint container(s)")
        return removed
