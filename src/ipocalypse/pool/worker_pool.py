"""
Concurrent lease-acquisition worker pool.

A fixed number of symmetric asyncio workers repeatedly pick a workload
image at random and ask the allocator for one endpoint with an address.

Per-worker loop:
    Idle -> Attempting -> Leased           -> (pace lease_interval) -> Idle
                       -> RetryableFailure -> (pace retry_backoff)  -> Idle
                       -> ExhaustionFailure -> Stopped

Pool lifecycle: RUNNING -> DRAINING -> STOPPED. The first exhaustion (or an
external cancel) trips the StopSignal and moves the pool to DRAINING; it
reaches STOPPED once every worker has exited. An attempt already in flight
when the signal trips is allowed to finish and is then discarded.

Allocator calls are blocking (docker-py) and run through asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Callable, Protocol

from ipocalypse.exceptions import (
    AddressExhaustedError,
    AllocatorTeardownError,
    ConfigurationError,
)
from ipocalypse.models.enums import LeaseOutcome, PoolState, StopReason
from ipocalypse.models.lease import LeaseAttempt, PoolRunResult, WorkloadReference
from ipocalypse.pool.signal import StopSignal
from ipocalypse.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)


class AddressAllocator(Protocol):
    """Creates endpoints and confirms their addresses."""

    def provision(self, workload: WorkloadReference) -> str: ...

    def await_address(self, endpoint_id: str, timeout: float) -> str: ...

    def release(self, endpoint_id: str) -> None: ...


AttemptObserver = Callable[[LeaseAttempt], None]


class LeaseAcquisitionWorkerPool:
    """
    Runs lease-acquisition workers until exhaustion or cancellation.

    Attributes:
        allocator: Endpoint allocator (see AddressAllocator).
        rng: Random source for image selection; inject a seeded
            ``random.Random`` for reproducible runs.
        lease_interval: Pacing sleep after a successful lease.
        on_attempt: Optional callback receiving every finished attempt.
    """

    DEFAULT_REQUEST_TIMEOUT = 10.0
    DEFAULT_RETRY_BACKOFF = 2.0
    DEFAULT_LEASE_INTERVAL = 1.0

    def __init__(
        self,
        allocator: AddressAllocator,
        rng: random.Random | None = None,
        lease_interval: float = DEFAULT_LEASE_INTERVAL,
        on_attempt: AttemptObserver | None = None,
    ):
        self.allocator = allocator
        self.rng = rng if rng is not None else random.Random()
        self.lease_interval = lease_interval
        self.on_attempt = on_attempt

        self.state = PoolState.IDLE
        self._signal: StopSignal | None = None
        self._leases = 0

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(
        self,
        worker_count: int,
        images: list[WorkloadReference],
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> PoolRunResult:
        """
        Run workers until the address space is exhausted or ``cancel`` is called.

        Args:
            worker_count: Number of parallel workers (>= 1).
            images: Non-empty list of workload references to pick from.
            request_timeout: Seconds each attempt waits for an address.
            retry_backoff: Sleep after a retryable failure.

        Returns:
            PoolRunResult with the lease count and stop reason.

        Raises:
            ConfigurationError: On invalid parameters, before any worker starts.
        """
        self._validate(worker_count, images, request_timeout, retry_backoff)
        if self.state != PoolState.IDLE:
            raise ConfigurationError(f"Pool cannot run from state {self.state.value}")

        images = tuple(images)
        self._signal = StopSignal()
        self._leases = 0
        self.state = PoolState.RUNNING
        started = time.monotonic()

        logger.info(
            f"Starting {worker_count} lease workers over {len(images)} image(s)"
        )

        workers = [
            asyncio.create_task(
                self._worker(worker_id, images, request_timeout, retry_backoff),
                name=f"lease-worker-{worker_id}",
            )
            for worker_id in range(worker_count)
        ]
        try:
            await asyncio.shield(asyncio.gather(*workers))
        except BaseException:
            # Coordinator cancelled or a worker crashed: stop the rest
            # cooperatively and let in-flight attempts settle first.
            self.cancel()
            await asyncio.wait(workers)
            raise
        finally:
            self.state = PoolState.STOPPED

        result = PoolRunResult(
            leases=self._leases,
            reason=self._signal.reason,
            cause=self._signal.cause,
            elapsed=time.monotonic() - started,
            attempts=self._signal.admitted,
        )
        logger.info(f"Lease workers stopped: {result.summary()}")
        return result

    def cancel(self) -> bool:
        """
        Stop the pool from outside (e.g. on SIGINT).

        Returns:
            True if this call stopped the pool, False if it was already stopping.
        """
        if self._signal is None:
            return False
        won = self._signal.trip(StopReason.CANCELLED)
        if won:
            self.state = PoolState.DRAINING
            logger.info("Pool cancelled, waiting for workers to finish")
        return won

    @property
    def stop_signal(self) -> StopSignal | None:
        return self._signal

    @property
    def leases(self) -> int:
        return self._leases

    # =========================================================================
    # Worker Loop
    # =========================================================================

    async def _worker(
        self,
        worker_id: int,
        images: tuple[WorkloadReference, ...],
        request_timeout: float,
        retry_backoff: float,
    ) -> None:
        signal = self._signal
        logger.debug(f"[Worker {worker_id}] started")

        while signal.admit():
            workload = self.rng.choice(images)
            attempt = await self._attempt(worker_id, workload, request_timeout)
            self._report(attempt)

            if attempt.outcome == LeaseOutcome.LEASED:
                self._leases += 1
                await signal.wait(self.lease_interval)
            elif attempt.outcome == LeaseOutcome.RETRYABLE:
                await signal.wait(retry_backoff)
            else:
                self._signal_exhaustion(worker_id, attempt)
                break

        logger.debug(f"[Worker {worker_id}] stopped")

    async def _attempt(
        self,
        worker_id: int,
        workload: WorkloadReference,
        request_timeout: float,
    ) -> LeaseAttempt:
        attempt = LeaseAttempt(
            worker_id=worker_id,
            workload=workload,
            outcome=LeaseOutcome.RETRYABLE,
            started_at=time.monotonic(),
        )
        try:
            attempt.endpoint_id = await asyncio.to_thread(
                self.allocator.provision, workload
            )
            attempt.address = await asyncio.to_thread(
                self.allocator.await_address, attempt.endpoint_id, request_timeout
            )
            attempt.outcome = LeaseOutcome.LEASED
        except AddressExhaustedError as e:
            attempt.outcome = LeaseOutcome.EXHAUSTED
            attempt.cause = e
        except Exception as e:
            attempt.cause = e
            logger.debug(f"[Worker {worker_id}] Traceback:\n{format_traceback(e)}")

        if attempt.outcome != LeaseOutcome.LEASED and attempt.endpoint_id:
            await self._release(worker_id, attempt.endpoint_id)

        attempt.finished_at = time.monotonic()
        return attempt

    async def _release(self, worker_id: int, endpoint_id: str) -> None:
        try:
            await asyncio.to_thread(self.allocator.release, endpoint_id)
        except AllocatorTeardownError as e:
            logger.warning(f"[Worker {worker_id}] {e}")
        except Exception as e:
            logger.warning(
                f"[Worker {worker_id}] Failed to release endpoint {endpoint_id[:12]}: {e}"
            )

    def _signal_exhaustion(self, worker_id: int, attempt: LeaseAttempt) -> None:
        if self._signal.trip(StopReason.EXHAUSTED, attempt.cause):
            self.state = PoolState.DRAINING
            logger.warning(
                f"[Worker {worker_id}] Address space exhausted, stopping all workers: "
                f"{attempt.cause}"
            )
        else:
            logger.debug(
                f"[Worker {worker_id}] Exhaustion observed after stop, discarded"
            )

    def _report(self, attempt: LeaseAttempt) -> None:
        prefix = f"[Worker {attempt.worker_id}]"
        if attempt.outcome == LeaseOutcome.LEASED:
            logger.info(
                f"{prefix} Launched endpoint {attempt.short_endpoint} "
                f"using image {attempt.workload} -> {attempt.address}"
            )
        elif attempt.outcome == LeaseOutcome.RETRYABLE:
            logger.warning(
                f"{prefix} Attempt with image {attempt.workload} failed, "
                f"retrying: {attempt.cause}"
            )
        else:
            logger.info(
                f"{prefix} Endpoint {attempt.short_endpoint} from image "
                f"{attempt.workload} got no address"
            )

        if self.on_attempt is not None:
            self.on_attempt(attempt)

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _validate(
        worker_count: int,
        images: list[WorkloadReference],
        request_timeout: float,
        retry_backoff: float,
    ) -> None:
        if isinstance(worker_count, bool) or not isinstance(worker_count, int):
            raise ConfigurationError(f"Worker count must be an integer: {worker_count!r}")
        if worker_count < 1:
            raise ConfigurationError(f"Worker count must be at least 1, got {worker_count}")
        if not images:
            raise ConfigurationError("Image list must not be empty")
        if request_timeout < 0:
            raise ConfigurationError(f"Request timeout must be >= 0, got {request_timeout}")
        if retry_backoff < 0:
            raise ConfigurationError(f"Retry backoff must be >= 0, got {retry_backoff}")
