"""
Host network topology.

The detector produces exactly one ``NetworkTopology`` per run; the macvlan
provisioner consumes it to create the shared segment. It never changes
after construction.

Example (host on a /24 behind 192.168.1.1):
    interface:    eth0
    host_address: 192.168.1.100/24
    subnet:       192.168.1.0/24
    gateway:      192.168.1.1
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass


@dataclass(frozen=True)
class NetworkTopology:
    """
    Host-side parameters needed to provision endpoints on a shared segment.

    Attributes:
        interface: Parent interface name (e.g., "eth0")
        host_address: Host IPv4 address in CIDR form (e.g., "10.0.0.42/24")
        subnet: Network CIDR containing host_address (e.g., "10.0.0.0/24")
        gateway: Gateway IPv4 address (e.g., "10.0.0.1")
    """

    interface: str
    host_address: str
    subnet: str
    gateway: str

    def __post_init__(self):
        for field_name in ("interface", "host_address", "subnet", "gateway"):
            if not getattr(self, field_name):
                raise ValueError(f"Topology field '{field_name}' is empty")

        host = ipaddress.ip_interface(self.host_address)
        network = ipaddress.ip_network(self.subnet, strict=True)
        gateway = ipaddress.ip_address(self.gateway)

        if host.version != 4 or network.version != 4 or gateway.version != 4:
            raise ValueError("Only IPv4 topologies are supported")
        if host.ip not in network:
            raise ValueError(
                f"Host address {self.host_address} is not in subnet {self.subnet}"
            )

    @classmethod
    def from_address(
        cls, interface: str, host_address: str, gateway: str
    ) -> NetworkTopology:
        """
        Build a topology, deriving the subnet from the host address.

        Args:
            interface: Parent interface name.
            host_address: Host address in CIDR notation.
            gateway: Gateway address.

        Raises:
            ValueError: If any field is empty or not valid IPv4.
        """
        if not host_address:
            raise ValueError("Topology field 'host_address' is empty")
        subnet = str(ipaddress.ip_interface(host_address).network)
        return cls(
            interface=interface,
            host_address=host_address,
            subnet=subnet,
            gateway=gateway,
        )

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.subnet)

    @property
    def host_ip(self) -> str:
        """Host address without prefix length."""
        return str(ipaddress.ip_interface(self.host_address).ip)

    @property
    def prefix_len(self) -> int:
        return self.network.prefixlen

    @property
    def address_capacity(self) -> int:
        """
        Usable addresses in the subnet, excluding the gateway and this host.

        Point-to-point /31 and single-host /32 subnets have no room left once
        the gateway and host are taken, so their capacity is 0.
        """
        hosts = self.network.num_addresses
        if self.prefix_len < 31:
            hosts -= 2
        return max(hosts - 2, 0)

    def to_dict(self) -> dict[str, str]:
        return {
            "interface": self.interface,
            "host_address": self.host_address,
            "subnet": self.subnet,
            "gateway": self.gateway,
        }

    def __str__(self) -> str:
        return (
            f"{self.interface}: host={self.host_address} "
            f"subnet={self.subnet} gateway={self.gateway}"
        )
