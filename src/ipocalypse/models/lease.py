"""
Lease attempt and pool result data models.
"""

from __future__ import annotations

from dataclasses import dataclass

from ipocalypse.models.enums import LeaseOutcome, StopReason


@dataclass(frozen=True)
class WorkloadReference:
    """
    A buildable workload image.

    Attributes:
        name: Image tag containers are launched from (e.g., "ipocalypse_0:latest")
        context_dir: Build context directory holding the Dockerfile
    """

    name: str
    context_dir: str

    def __str__(self) -> str:
        return self.name


@dataclass
class LeaseAttempt:
    """
    Record of one provisioning try by one worker.

    Only lives for the duration of the attempt; the pool hands it to an
    optional observer and then drops it.
    """

    worker_id: int
    workload: WorkloadReference
    outcome: LeaseOutcome
    endpoint_id: str | None = None
    address: str | None = None
    cause: BaseException | None = None
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    @property
    def short_endpoint(self) -> str:
        if not self.endpoint_id:
            return "-"
        return self.endpoint_id[:12]


@dataclass(frozen=True)
class PoolRunResult:
    """
    Summary of a finished pool run.

    Attributes:
        leases: Number of endpoints that confirmed an address
        reason: Why the pool stopped, exactly one of EXHAUSTED or CANCELLED
        cause: Exception behind exhaustion (None when cancelled)
        elapsed: Wall-clock duration of the run in seconds
        attempts: Number of provisioning attempts started
    """

    leases: int
    reason: StopReason
    cause: BaseException | None
    elapsed: float
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.reason == StopReason.EXHAUSTED

    @property
    def cancelled(self) -> bool:
        return self.reason == StopReason.CANCELLED

    def summary(self) -> str:
        """One-line human-readable summary."""
        text = (
            f"{self.leases} lease(s) in {self.elapsed:.1f}s "
            f"({self.attempts} attempts), stopped: {self.reason.value}"
        )
        if self.cause is not None:
            text += f" ({self.cause})"
        return text
