"""
Read-only host network queries used by the topology detector.

Two backends expose the same four queries:
    - PyRoute2HostNetwork: netlink through pyroute2 (default)
    - IPCommandHostNetwork: the ``ip`` command, parsed from ``-o`` output

Neither backend mutates host state.
"""

from __future__ import annotations

import socket
import subprocess
from dataclasses import dataclass
from typing import Protocol

from ipocalypse.exceptions import HostQueryError
from ipocalypse.models.enums import NetworkBackend
from ipocalypse.utils.logger import get_logger

logger = get_logger(__name__)

IFF_UP = 0x1
RT_TABLE_MAIN = 254
RTN_UNICAST = 1


@dataclass(frozen=True)
class RouteEntry:
    """A single IPv4 route."""

    destination: str  # "default" or a CIDR
    gateway: str | None = None
    interface: str | None = None

    @property
    def is_default(self) -> bool:
        return self.destination in ("default", "0.0.0.0/0")

    @property
    def is_routable(self) -> bool:
        """Both a next hop and an outgoing interface are known."""
        return bool(self.gateway and self.interface)


class HostNetwork(Protocol):
    """Queries the detector needs from the host."""

    def default_routes(self) -> list[RouteEntry]: ...

    def interface_routes(self, interface: str) -> list[RouteEntry]: ...

    def up_links(self) -> list[str]: ...

    def ipv4_addresses(self, interface: str) -> list[str]: ...


# =============================================================================
# Text Parsing (iproute2 output)
# =============================================================================


def parse_route_line(line: str, interface: str | None = None) -> RouteEntry | None:
    """
    Parse one line of ``ip route`` output.

    Only the destination (first token) and the values following the
    ``via`` and ``dev`` keywords are read.

    Args:
        line: e.g. "default via 192.168.1.1 dev eth0 proto dhcp metric 100"
        interface: Interface to assume when the line has no ``dev`` token
            (as in ``ip route show dev eth0`` output).

    Returns:
        RouteEntry, or None for a blank line.
    """
    tokens = line.split()
    if not tokens:
        return None

    gateway = None
    dev = interface
    for keyword, value in zip(tokens, tokens[1:]):
        if keyword == "via":
            gateway = value
        elif keyword == "dev":
            dev = value

    return RouteEntry(destination=tokens[0], gateway=gateway, interface=dev)


def parse_link_line(line: str) -> str | None:
    """
    Extract the interface name from one line of ``ip -o link`` output.

    "2: eth0: <BROADCAST,...>" -> "eth0"
    "7: veth1@if6: <BROADCAST,...>" -> "veth1"
    """
    parts = line.split(":", 2)
    if len(parts) < 3:
        return None
    name = parts[1].strip().split("@", 1)[0]
    return name or None


def parse_inet_line(line: str) -> str | None:
    """
    Extract the CIDR address from one line of ``ip -o -f inet addr`` output.

    "2: eth0    inet 192.168.1.100/24 brd 192.168.1.255 scope global eth0"
    -> "192.168.1.100/24"
    """
    tokens = line.split()
    for keyword, value in zip(tokens, tokens[1:]):
        if keyword == "inet" and "/" in value:
            return value
    return None


# =============================================================================
# iproute2 Backend
# =============================================================================


class IPCommandHostNetwork:
    """Host queries through the ``ip`` command."""

    def __init__(self, ip_binary: str = "ip"):
        self.ip_binary = ip_binary

    def _run(self, *args: str) -> list[str]:
        cmd = [self.ip_binary, *args]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError as e:
            raise HostQueryError(f"'{self.ip_binary}' command not found") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise HostQueryError(f"'{' '.join(cmd)}' failed: {stderr}") from e
        return result.stdout.splitlines()

    def default_routes(self) -> list[RouteEntry]:
        # "unreachable default" and "blackhole default" start with the route
        # type, so they never parse as default. A multipath default has its
        # hops on following "nexthop via X dev Y" lines; the first hop is used.
        routes = []
        for line in self._run("-4", "route", "show", "default"):
            tokens = line.split()
            if tokens and tokens[0] == "nexthop":
                if routes and not routes[-1].is_routable:
                    hop = parse_route_line(line)
                    routes[-1] = RouteEntry(
                        routes[-1].destination, hop.gateway, hop.interface
                    )
                continue
            route = parse_route_line(line)
            if route is not None and route.is_default:
                routes.append(route)
        return routes

    def interface_routes(self, interface: str) -> list[RouteEntry]:
        routes = []
        for line in self._run("-4", "route", "show", "dev", interface):
            route = parse_route_line(line, interface=interface)
            if route is not None:
                routes.append(route)
        return routes

    def up_links(self) -> list[str]:
        names = []
        for line in self._run("-o", "link", "show", "up"):
            name = parse_link_line(line)
            if name:
                names.append(name)
        return names

    def ipv4_addresses(self, interface: str) -> list[str]:
        addresses = []
        for line in self._run("-o", "-f", "inet", "addr", "show", interface):
            cidr = parse_inet_line(line)
            if cidr:
                addresses.append(cidr)
        return addresses


# =============================================================================
# pyroute2 Backend
# =============================================================================


class PyRoute2HostNetwork:
    """Host queries over netlink."""

    def __init__(self):
        # Lazy-loaded pyroute2 IPRoute instance
        self._ipr = None

    def _get_ipr(self):
        """Get or create IPRoute instance."""
        if self._ipr is None:
            from pyroute2 import IPRoute

            self._ipr = IPRoute()
        return self._ipr

    def _query(self, what: str, func, *args, **kwargs):
        from pyroute2.netlink.exceptions import NetlinkError

        try:
            return list(func(*args, **kwargs))
        except (NetlinkError, OSError) as e:
            raise HostQueryError(f"Netlink query for {what} failed: {e}") from e

    def _ifname(self, index: int | None) -> str | None:
        if index is None:
            return None
        links = self._query("link", self._get_ipr().get_links, index)
        if not links:
            return None
        return links[0].get_attr("IFLA_IFNAME")

    def _ifindex(self, interface: str) -> int:
        indexes = self._query("link", self._get_ipr().link_lookup, ifname=interface)
        if not indexes:
            raise HostQueryError(f"Interface {interface} does not exist")
        return indexes[0]

    def _to_entry(self, route, interface: str | None = None) -> RouteEntry:
        dst = route.get_attr("RTA_DST")
        destination = f"{dst}/{route['dst_len']}" if dst else "default"
        return RouteEntry(
            destination=destination,
            gateway=route.get_attr("RTA_GATEWAY"),
            interface=interface or self._ifname(route.get_attr("RTA_OIF")),
        )

    def default_routes(self) -> list[RouteEntry]:
        ipr = self._get_ipr()
        routes = self._query(
            "routes", ipr.get_routes, family=socket.AF_INET, table=RT_TABLE_MAIN
        )
        entries = []
        for route in routes:
            # unreachable, blackhole and prohibit defaults have no next hop
            if route["dst_len"] != 0 or route.get("type", RTN_UNICAST) != RTN_UNICAST:
                continue
            entry = self._to_entry(route)
            if not entry.is_routable:
                entry = self._first_nexthop(route) or entry
            entries.append(entry)
        return entries

    def _first_nexthop(self, route) -> RouteEntry | None:
        """Gateway and interface of the first hop of a multipath route."""
        for hop in route.get_attr("RTA_MULTIPATH") or []:
            gateway = hop.get_attr("RTA_GATEWAY")
            interface = self._ifname(hop.get("oif"))
            if gateway and interface:
                return RouteEntry("default", gateway=gateway, interface=interface)
        return None

    def interface_routes(self, interface: str) -> list[RouteEntry]:
        ipr = self._get_ipr()
        index = self._ifindex(interface)
        routes = self._query(
            "routes",
            ipr.get_routes,
            family=socket.AF_INET,
            table=RT_TABLE_MAIN,
            oif=index,
        )
        return [self._to_entry(r, interface=interface) for r in routes]

    def up_links(self) -> list[str]:
        links = self._query("links", self._get_ipr().get_links)
        return [
            link.get_attr("IFLA_IFNAME")
            for link in links
            if link["flags"] & IFF_UP and link.get_attr("IFLA_IFNAME")
        ]

    def ipv4_addresses(self, interface: str) -> list[str]:
        ipr = self._get_ipr()
        index = self._ifindex(interface)
        addrs = self._query(
            "addresses", ipr.get_addr, family=socket.AF_INET, index=index
        )
        result = []
        for addr in addrs:
            ip = addr.get_attr("IFA_LOCAL") or addr.get_attr("IFA_ADDRESS")
            if ip:
                result.append(f"{ip}/{addr['prefixlen']}")
        return result

    def close(self) -> None:
        if self._ipr is not None:
            self._ipr.close()
            self._ipr = None


def get_host_network(backend: NetworkBackend | str) -> HostNetwork:
    """Create the host query backend selected in configuration."""
    backend = NetworkBackend(backend)
    logger.debug(f"Using {backend.value} host network backend")
    if backend == NetworkBackend.IPROUTE:
        return IPCommandHostNetwork()
    return PyRoute2HostNetwork()
