"""
Macvlan segment setup and teardown.

Creates the shared layer-2 segment the endpoints attach to:

1. Docker network (driver=macvlan, macvlan_mode=bridge, attachable) on the
   detected parent interface, with IPAM subnet/gateway from the topology
2. Host-side ``macvlan0`` interface in bridge mode carrying the host's
   address, plus a route for the subnet, so the host can reach endpoints
3. Optionally, IPv4 forwarding and a MASQUERADE rule for internet access

Host mutation goes through pyroute2 or explicit iptables argument lists.
"""

from __future__ import annotations

import errno
import socket
import subprocess

import docker
from docker.errors import DockerException, NotFound

from ipocalypse.config import config
from ipocalypse.docker.client import DockerManager
from ipocalypse.exceptions import NetworkSetupError
from ipocalypse.models.topology import NetworkTopology
from ipocalypse.utils.logger import get_logger

logger = get_logger(__name__)

IP_FORWARD_PATH = "/proc/sys/net/ipv4/ip_forward"


def masquerade_rule(subnet: str) -> list[str]:
    """iptables rule spec (without the action flag) for NAT of the subnet."""
    return ["POSTROUTING", "-s", subnet, "-j", "MASQUERADE"]


class MacvlanProvisioner:
    """
    Manages the Docker macvlan network and the host bridging interface.

    Attributes:
        network_name: Docker network name.
        host_interface: Name of the host-side macvlan interface.
        mode: Macvlan mode for both the Docker network and host interface.
    """

    def __init__(
        self,
        docker_manager: DockerManager,
        network_name: str | None = None,
        host_interface: str | None = None,
        mode: str | None = None,
    ):
        self.client = docker_manager.client
        self.network_name = network_name or config.NETWORK_NAME
        self.host_interface = host_interface or config.HOST_MACVLAN_INTERFACE
        self.mode = mode or config.MACVLAN_MODE

        # Lazy-loaded pyroute2 IPRoute instance
        self._ipr = None

    def _get_ipr(self):
        """Get or create IPRoute instance."""
        if self._ipr is None:
            from pyroute2 import IPRoute

            self._ipr = IPRoute()
        return self._ipr

    def _link_index(self, name: str) -> int | None:
        indexes = self._get_ipr().link_lookup(ifname=name)
        return indexes[0] if indexes else None

    # =========================================================================
    # Setup
    # =========================================================================

    def setup(
        self,
        topology: NetworkTopology,
        host_interface: bool = True,
        internet_access: bool = False,
    ) -> str:
        """
        Create the segment for a topology.

        Args:
            topology: Detected or manual host topology.
            host_interface: Also create the host macvlan interface.
            internet_access: Also enable forwarding and NAT.

        Returns:
            Docker network ID.

        Raises:
            NetworkSetupError: If any step fails.
        """
        network_id = self.ensure_network(topology)
        if host_interface:
            self.setup_host_interface(topology)
        if internet_access:
            self.enable_internet_access(topology)
        return network_id

    def ensure_network(self, topology: NetworkTopology) -> str:
        """
        Create the macvlan Docker network unless one with the name exists.

        Returns:
            Docker network ID.
        """
        try:
            existing = [
                n for n in self.client.networks.list(names=[self.network_name])
                if n.name == self.network_name
            ]
            if existing:
                logger.info(f"Docker network '{self.network_name}' already exists")
                return existing[0].id

            logger.info(
                f"Creating Docker macvlan network '{self.network_name}' "
                f"on {topology.interface} with subnet {topology.subnet}"
            )
            ipam_pool = docker.types.IPAMPool(
                subnet=topology.subnet,
                gateway=topology.gateway,
            )
            ipam_config = docker.types.IPAMConfig(pool_configs=[ipam_pool])
            network = self.client.networks.create(
                self.network_name,
                driver="macvlan",
                ipam=ipam_config,
                options={
                    "parent": topology.interface,
                    "macvlan_mode": self.mode,
                },
                attachable=True,
            )
        except DockerException as e:
            raise NetworkSetupError(
                f"Failed to create Docker network '{self.network_name}': {e}"
            ) from e

        logger.info(f"Created Docker network {self.network_name} ({network.id[:12]})")
        return network.id

    def setup_host_interface(self, topology: NetworkTopology) -> None:
        """
        Create the host macvlan interface so the host can reach endpoints.

        An existing interface with the same name is deleted first.
        """
        from pyroute2.netlink.exceptions import NetlinkError

        ipr = self._get_ipr()
        name = self.host_interface
        try:
            parent_idx = self._link_index(topology.interface)
            if parent_idx is None:
                raise NetworkSetupError(
                    f"Parent interface {topology.interface} does not exist"
                )

            stale_idx = self._link_index(name)
            if stale_idx is not None:
                logger.info(f"Removing existing interface {name}")
                ipr.link("del", index=stale_idx)

            logger.info(f"Creating host macvlan interface '{name}'")
            ipr.link(
                "add",
                ifname=name,
                kind="macvlan",
                link=parent_idx,
                macvlan_mode=self.mode,
            )
            idx = self._link_index(name)
            if idx is None:
                raise NetworkSetupError(f"Failed to create interface {name}")

            ipr.addr(
                "add",
                index=idx,
                address=topology.host_ip,
                prefixlen=topology.prefix_len,
            )
            ipr.link("set", index=idx, state="up")
        except NetlinkError as e:
            raise NetworkSetupError(f"Failed to configure {name}: {e}") from e

        network = topology.network
        try:
            ipr.route(
                "add",
                dst=str(network.network_address),
                dst_len=network.prefixlen,
                oif=idx,
            )
        except NetlinkError as e:
            # The kernel already adds the connected route with the address
            if e.code != errno.EEXIST:
                logger.warning(f"Failed to add route {network} dev {name}: {e}")

        logger.info(f"Host macvlan interface {name} configured with {topology.host_address}")

    def enable_internet_access(self, topology: NetworkTopology) -> None:
        """Enable IPv4 forwarding and NAT for the endpoint subnet."""
        try:
            with open(IP_FORWARD_PATH, "w") as f:
                f.write("1")
            logger.info("Enabled IPv4 forwarding")
        except PermissionError:
            logger.warning(
                "Cannot enable IP forwarding (no permission). "
                "Ensure net.ipv4.ip_forward=1 is set."
            )

        rule = masquerade_rule(topology.subnet)
        if self._iptables_nat("-C", rule):
            logger.debug(f"NAT rule already exists for {topology.subnet}")
            return
        if not self._iptables_nat("-A", rule):
            raise NetworkSetupError(f"Failed to add MASQUERADE rule for {topology.subnet}")
        logger.info(f"Internet access enabled for {topology.subnet}")

    @staticmethod
    def _iptables_nat(action: str, rule: list[str]) -> bool:
        cmd = ["iptables", "-t", "nat", action] + rule
        try:
            subprocess.run(cmd, check=True, capture_output=True)
            return True
        except subprocess.CalledProcessError:
            return False
        except FileNotFoundError as e:
            raise NetworkSetupError("iptables command not found") from e

    # =========================================================================
    # Teardown
    # =========================================================================

    def teardown(self) -> None:
        """
        Remove the Docker network, its NAT rule and the host interface.

        Missing pieces are skipped; failures are logged, not raised.
        """
        subnet = self._remove_docker_network()
        if subnet:
            self._remove_nat_rule(subnet)
        self._remove_host_interface()

    def _remove_docker_network(self) -> str | None:
        try:
            network = self.client.networks.get(self.network_name)
        except NotFound:
            logger.debug(f"Docker network {self.network_name} not found")
            return None
        except DockerException as e:
            logger.warning(f"Failed to look up Docker network: {e}")
            return None

        ipam_configs = (network.attrs.get("IPAM") or {}).get("Config") or []
        subnet = ipam_configs[0].get("Subnet") if ipam_configs else None

        try:
            network.remove()
            logger.info(f"Removed Docker network {self.network_name}")
        except DockerException as e:
            logger.warning(f"Failed to remove Docker network: {e}")
        return subnet

    def _remove_nat_rule(self, subnet: str) -> None:
        rule = masquerade_rule(subnet)
        try:
            if self._iptables_nat("-C", rule) and self._iptables_nat("-D", rule):
                logger.info(f"Removed NAT rule for {subnet}")
        except NetworkSetupError as e:
            logger.warning(str(e))

    def _remove_host_interface(self) -> None:
        from pyroute2.netlink.exceptions import NetlinkError

        ipr = self._get_ipr()
        name = self.host_interface
        try:
            idx = self._link_index(name)
            if idx is None:
                logger.debug(f"Interface {name} not found")
                return

            for route in ipr.get_routes(family=socket.AF_INET, oif=idx):
                dst = route.get_attr("RTA_DST")
                if dst is None:
                    continue
                try:
                    ipr.route("del", dst=dst, dst_len=route["dst_len"], oif=idx)
                    logger.debug(f"Removed route {dst}/{route['dst_len']} dev {name}")
                except NetlinkError as e:
                    logger.debug(f"Route {dst} already gone: {e}")

            ipr.link("set", index=idx, state="down")
            ipr.link("del", index=idx)
            logger.info(f"Removed host interface {name}")
        except NetlinkError as e:
            logger.warning(f"Failed to remove interface {name}: {e}")

    def close(self) -> None:
        if self._ipr is not None:
            self._ipr.close()
            self._ipr = None
