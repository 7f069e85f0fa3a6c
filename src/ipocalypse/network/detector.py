"""
Host network topology detection.

Works out which interface, host address, subnet and gateway the macvlan
segment should be built on:

1. Default route present: take its ``dev`` interface and ``via`` gateway
   (the first route with both wins when there are several).
2. No default route: pick the first administratively-up interface with an
   Ethernet-style name (en*, eth*, eno*, ens*), else fall back to ``eth0``.
   The result may be unusable, so a warning is logged.
3. Read the first IPv4 address on the interface and derive the subnet.

Any failure is raised as DetectionError; nothing is retried. Interfaces
flapping between the steps is a hard failure of the run.
"""

from __future__ import annotations

import ipaddress
import re

from ipocalypse.exceptions import (
    DetectionError,
    HostQueryError,
    NoAddressError,
)
from ipocalypse.models.topology import NetworkTopology
from ipocalypse.network.host import HostNetwork, PyRoute2HostNetwork
from ipocalypse.utils.logger import get_logger

logger = get_logger(__name__)


class NetworkTopologyDetector:
    """
    Computes the NetworkTopology for this host.

    Attributes:
        host: Read-only host query backend.
        fallback_interface: Interface used when nothing else matches.
    """

    # en* already covers eno* and ens*
    ETHERNET_NAME_PATTERN = re.compile(r"^(en|eth)")
    DEFAULT_FALLBACK_INTERFACE = "eth0"

    def __init__(
        self,
        host: HostNetwork | None = None,
        fallback_interface: str = DEFAULT_FALLBACK_INTERFACE,
    ):
        self.host = host if host is not None else PyRoute2HostNetwork()
        self.fallback_interface = fallback_interface

    # =========================================================================
    # Public API
    # =========================================================================

    def detect(self) -> NetworkTopology:
        """
        Detect the host network topology.

        Returns:
            NetworkTopology with all four fields populated.

        Raises:
            DetectionError: If any step fails; the original error is chained.
        """
        try:
            interface, gateway = self._select_interface()
            host_address = self.interface_address(interface)
            if gateway is None:
                gateway = self._fallback_gateway(interface, host_address)
            topology = NetworkTopology.from_address(interface, host_address, gateway)
        except (HostQueryError, NoAddressError, ValueError) as e:
            raise DetectionError(f"Network detection failed: {e}") from e

        logger.info(f"Detected network topology: {topology}")
        return topology

    def resolve_manual(
        self, interface: str, subnet: str, gateway: str
    ) -> NetworkTopology:
        """
        Build a topology from explicit parent/subnet/gateway values.

        The host address is still read from the interface.

        Raises:
            DetectionError: If the interface has no address or the values
                are inconsistent.
        """
        try:
            host_address = self.interface_address(interface)
            topology = NetworkTopology(
                interface=interface,
                host_address=host_address,
                subnet=subnet,
                gateway=gateway,
            )
        except (HostQueryError, NoAddressError, ValueError) as e:
            raise DetectionError(
                f"Manual network configuration is invalid: {e}"
            ) from e

        logger.info(f"Using manual network topology: {topology}")
        return topology

    def interface_address(self, interface: str) -> str:
        """
        First IPv4 address of an interface in CIDR notation.

        Raises:
            NoAddressError: If the interface has no IPv4 address.
            HostQueryError: If the host query fails.
        """
        addresses = self.host.ipv4_addresses(interface)
        if not addresses:
            raise NoAddressError(interface)
        return addresses[0]

    def fallback_interface_name(self) -> str:
        """
        Pick an Ethernet-style interface that is up, or the fixed default.
        """
        for name in self.host.up_links():
            if self.ETHERNET_NAME_PATTERN.match(name):
                return name
        return self.fallback_interface

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _select_interface(self) -> tuple[str, str | None]:
        """Return (interface, gateway); gateway is None on the fallback path."""
        routes = self.host.default_routes()
        for route in routes:
            if not route.is_routable:
                logger.debug(f"Skipping incomplete default route: {route}")
                continue
            logger.debug(
                f"Default route via {route.gateway} dev {route.interface}"
            )
            return route.interface, route.gateway

        if routes:
            route = routes[0]
            raise DetectionError(
                f"Could not parse default route: {route.destination} "
                f"via {route.gateway} dev {route.interface}"
            )

        interface = self.fallback_interface_name()
        logger.warning(
            f"No default route found, falling back to interface {interface}. "
            "The detected topology may be unusable."
        )
        return interface, None

    def _fallback_gateway(self, interface: str, host_address: str) -> str:
        for route in self.host.interface_routes(interface):
            if route.gateway:
                return route.gateway

        network = ipaddress.ip_interface(host_address).network
        first_host = next(network.hosts(), None)
        if first_host is None:
            raise DetectionError(f"Subnet {network} has no usable host addresses")
        logger.warning(
            f"No gateway found on {interface}, assuming first host address {first_host}"
        )
        return str(first_host)
