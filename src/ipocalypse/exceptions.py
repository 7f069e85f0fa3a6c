"""ipocalypse exception classes."""


class IpocalypseError(Exception):
    """Base exception for ipocalypse."""

    pass


# =============================================================================
# Setup Errors
# =============================================================================


class ConfigurationError(IpocalypseError):
    """Invalid run parameters (worker count, image list, timeouts)."""

    pass


class DetectionError(IpocalypseError):
    """Host network topology could not be determined."""

    pass


class HostQueryError(IpocalypseError):
    """Querying routes, links or addresses from the host failed."""

    pass


class NoAddressError(IpocalypseError):
    """Interface has no IPv4 address."""

    def __init__(self, interface: str):
        self.interface = interface
        super().__init__(f"No IPv4 address found on interface {interface}")


class NetworkSetupError(IpocalypseError):
    """Creating or tearing down the macvlan segment failed."""

    pass


class DockerConnectionError(IpocalypseError):
    """Failed to connect to the Docker daemon."""

    pass


class ImageBuildError(IpocalypseError):
    """Building a workload image failed."""

    def __init__(self, message: str, tag: str):
        self.tag = tag
        super().__init__(f"Image build failed for {tag}: {message}")


# =============================================================================
# Allocator Errors
# =============================================================================


class AllocatorError(IpocalypseError):
    """Base exception for address allocator operations."""

    pass


class EndpointProvisionError(AllocatorError):
    """Endpoint could not be created or inspected. Retryable."""

    def __init__(self, message: str, endpoint_id: str | None = None):
        self.endpoint_id = endpoint_id
        super().__init__(message)


class AddressExhaustedError(AllocatorError):
    """
    The subnet is believed full.

    Raised either for a started endpoint that got no address within
    ``timeout`` or, with ``endpoint_id=None``, when no endpoint could be
    started because every assignable address on the network is taken.
    """

    def __init__(
        self,
        endpoint_id: str | None,
        timeout: float | None = None,
        message: str | None = None,
    ):
        self.endpoint_id = endpoint_id
        self.timeout = timeout
        if message is None:
            message = (
                f"Endpoint {(endpoint_id or '-')[:12]} did not receive an address "
                f"within {timeout or 0:g}s"
            )
        super().__init__(message)


class AllocatorTeardownError(AllocatorError):
    """Releasing an endpoint failed."""

    def __init__(self, message: str, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(f"Failed to release endpoint {endpoint_id[:12]}: {message}")
