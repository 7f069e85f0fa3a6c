"""
Enumeration types shared across ipocalypse.

All enums inherit from ``str`` so they print and compare as plain values
in logs and CLI options.
"""

from enum import Enum

# =============================================================================
# Lease Enums
# =============================================================================


class LeaseOutcome(str, Enum):
    """
    Classification of a single provisioning attempt.

    Values:
        - LEASED: Endpoint was created and confirmed an address
        - RETRYABLE: Attempt failed for a reason other than exhaustion
        - EXHAUSTED: No address could be assigned; the subnet is believed full
    """

    LEASED = "leased"
    RETRYABLE = "retryable"
    EXHAUSTED = "exhausted"


class StopReason(str, Enum):
    """
    Why a worker pool stopped.

    Values:
        - EXHAUSTED: A worker observed address exhaustion (expected end)
        - CANCELLED: Stopped from outside, e.g. by a signal handler
    """

    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class PoolState(str, Enum):
    """Lifecycle of a worker pool run."""

    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


# =============================================================================
# Configuration Enums
# =============================================================================


class NetworkBackend(str, Enum):
    """
    How the topology detector talks to the host network stack.

    Values:
        - PYROUTE2: Netlink queries through pyroute2
        - IPROUTE: The ``ip`` command from iproute2
    """

    PYROUTE2 = "pyroute2"
    IPROUTE = "iproute"


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Debug output plus backtraces with variable values
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
