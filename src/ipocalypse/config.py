"""
ipocalypse configuration.

A global Config instance that the CLI modifies at runtime from its options.
"""

import os
from dataclasses import dataclass, field

from ipocalypse.models.enums import LogLevel, NetworkBackend


@dataclass
class IpocalypseConfig:
    """Runtime configuration."""

    # Network Configuration
    NETWORK_NAME: str = "ipocalypse_net"
    HOST_MACVLAN_INTERFACE: str = "macvlan0"
    MACVLAN_MODE: str = "bridge"
    NETWORK_BACKEND: NetworkBackend = NetworkBackend.PYROUTE2
    FALLBACK_INTERFACE: str = "eth0"

    # Image Configuration
    IMAGE_DIR_PREFIX: str = "ipocalypse_"
    IMAGE_TAG_TEMPLATE: str = "ipocalypse_{index}:latest"
    IMAGE_SEARCH_DIR: str = "."

    # Pool Configuration
    WORKERS: int = 5
    REQUEST_TIMEOUT: float = 10.0  # seconds to wait for an endpoint address
    RETRY_BACKOFF: float = 2.0
    LEASE_INTERVAL: float = 1.0  # pacing after a successful lease
    ADDRESS_POLL_INTERVAL: float = 1.0

    # Endpoint Configuration
    ENDPOINT_COMMAND: list[str] = field(
        default_factory=lambda: ["sh", "-c", "dhclient eth0 && sleep 3600"]
    )
    ENDPOINT_CAPABILITIES: list[str] = field(default_factory=lambda: ["NET_ADMIN"])

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO

    def get_image_tag(self, index: int) -> str:
        """Get the tag for the index-th workload image."""
        return self.IMAGE_TAG_TEMPLATE.format(index=index)

    def get_search_dir(self) -> str:
        """Get the absolute directory scanned for workload image directories."""
        return os.path.abspath(self.IMAGE_SEARCH_DIR)


# Global config instance
config = IpocalypseConfig()
