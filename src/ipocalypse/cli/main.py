"""
ipocalypse CLI entry point.

Usage:
    ipocalypse [OPTIONS] COMMAND [ARGS]...

Commands:
    run            Build images, create the macvlan network, lease until exhausted
    detect         Show the detected host network topology
    setup-network  Create the macvlan network and host interface only
    cleanup        Remove endpoint containers, the network and host interface
    version        Show version information
"""

import asyncio
import json
import signal
from typing import Annotated

import typer

from ipocalypse.cli.output import (
    console,
    format_run_summary,
    format_topology_table,
    print_error,
    print_success,
)
from ipocalypse.config import config
from ipocalypse.docker.allocator import DockerAddressAllocator
from ipocalypse.docker.client import DockerManager
from ipocalypse.docker.images import ImageCatalog
from ipocalypse.exceptions import ConfigurationError, IpocalypseError
from ipocalypse.models.enums import LogLevel, NetworkBackend
from ipocalypse.models.lease import PoolRunResult, WorkloadReference
from ipocalypse.models.topology import NetworkTopology
from ipocalypse.network.detector import NetworkTopologyDetector
from ipocalypse.network.host import get_host_network
from ipocalypse.network.macvlan import MacvlanProvisioner
from ipocalypse.pool.worker_pool import LeaseAcquisitionWorkerPool
from ipocalypse.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="ipocalypse",
    help="Lease addresses on a macvlan segment until the subnet is exhausted",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

BackendOption = Annotated[
    NetworkBackend,
    typer.Option("--backend", help="Host network query backend", envvar="IPOCALYPSE_BACKEND"),
]
LogLevelOption = Annotated[
    LogLevel,
    typer.Option("--log-level", "-l", help="Log verbosity", envvar="IPOCALYPSE_LOG_LEVEL"),
]
NetworkOption = Annotated[
    str,
    typer.Option("--network", "-n", help="Name for the macvlan Docker network", envvar="IPOCALYPSE_NETWORK"),
]


# =============================================================================
# Helpers
# =============================================================================


def _apply_common(log_level: LogLevel, backend: NetworkBackend, network: str) -> None:
    config.LOG_LEVEL = log_level
    config.NETWORK_BACKEND = backend
    config.NETWORK_NAME = network
    configure_logging(log_level)


def _resolve_topology(
    auto_network: bool,
    parent: str | None,
    subnet: str | None,
    gateway: str | None,
) -> NetworkTopology:
    detector = NetworkTopologyDetector(
        get_host_network(config.NETWORK_BACKEND),
        fallback_interface=config.FALLBACK_INTERFACE,
    )
    if auto_network:
        return detector.detect()
    if not (parent and subnet and gateway):
        raise ConfigurationError(
            "When --no-auto-network is set, --parent, --subnet and --gateway are required"
        )
    return detector.resolve_manual(parent, subnet, gateway)


def _resolve_catalog(
    dockerfiles: str | None, discover: bool, search_dir: str
) -> ImageCatalog:
    if dockerfiles:
        return ImageCatalog.from_dirs(dockerfiles.split(","))
    if discover:
        config.IMAGE_SEARCH_DIR = search_dir
        return ImageCatalog.discover(config.get_search_dir())
    raise ConfigurationError(
        "Provide at least one Dockerfile directory using --dockerfiles, or use --discover"
    )


async def _run_pool(
    pool: LeaseAcquisitionWorkerPool,
    images: list[WorkloadReference],
    workers: int,
    request_timeout: float,
    retry_backoff: float,
) -> PoolRunResult:
    """Run the pool with SIGINT/SIGTERM wired to cooperative cancellation."""
    loop = asyncio.get_running_loop()
    stop_signals = (signal.SIGINT, signal.SIGTERM)
    for sig in stop_signals:
        loop.add_signal_handler(sig, pool.cancel)
    try:
        return await pool.run(
            workers,
            images,
            request_timeout=request_timeout,
            retry_backoff=retry_backoff,
        )
    finally:
        for sig in stop_signals:
            loop.remove_signal_handler(sig)


def _cleanup(docker_manager: DockerManager) -> None:
    DockerAddressAllocator(docker_manager).cleanup_all()
    provisioner = MacvlanProvisioner(docker_manager)
    try:
        provisioner.teardown()
    finally:
        provisioner.close()


# =============================================================================
# Commands
# =============================================================================


@app.command("run")
def run_command(
    dockerfiles: Annotated[
        str | None,
        typer.Option(
            "--dockerfiles",
            "-d",
            help="Comma-separated list of directories containing Dockerfiles",
            envvar="IPOCALYPSE_DOCKERFILES",
        ),
    ] = None,
    discover: Annotated[
        bool,
        typer.Option(
            "--discover",
            help=f"Use every '{config.IMAGE_DIR_PREFIX}*' directory holding a Dockerfile",
        ),
    ] = False,
    search_dir: Annotated[
        str, typer.Option("--search-dir", help="Directory scanned by --discover")
    ] = ".",
    workers: Annotated[
        int,
        typer.Option("--workers", "-w", help="Number of concurrent container launch workers"),
    ] = config.WORKERS,
    network: NetworkOption = config.NETWORK_NAME,
    auto_network: Annotated[
        bool,
        typer.Option(
            "--auto-network/--no-auto-network",
            help="Detect interface, subnet and gateway automatically",
        ),
    ] = True,
    parent: Annotated[
        str | None, typer.Option("--parent", help="Parent network interface on the host")
    ] = None,
    subnet: Annotated[
        str | None, typer.Option("--subnet", help="Subnet for the macvlan network (CIDR)")
    ] = None,
    gateway: Annotated[
        str | None, typer.Option("--gateway", help="Gateway for the macvlan network")
    ] = None,
    internet: Annotated[
        bool,
        typer.Option(
            "--internet",
            help="Give containers internet access (host macvlan interface + NAT)",
        ),
    ] = False,
    request_timeout: Annotated[
        float,
        typer.Option("--request-timeout", help="Seconds to wait for each container's address"),
    ] = config.REQUEST_TIMEOUT,
    retry_backoff: Annotated[
        float,
        typer.Option("--retry-backoff", help="Seconds to wait after a failed launch"),
    ] = config.RETRY_BACKOFF,
    cleanup: Annotated[
        bool,
        typer.Option("--cleanup", help="Tear the network down after the run"),
    ] = False,
    backend: BackendOption = NetworkBackend.PYROUTE2,
    log_level: LogLevelOption = LogLevel.INFO,
):
    """Launch containers until the subnet runs out of addresses."""
    _apply_common(log_level, backend, network)

    docker_manager = None
    try:
        if workers < 1:
            raise ConfigurationError(f"--workers must be at least 1, got {workers}")
        catalog = _resolve_catalog(dockerfiles, discover, search_dir)

        topology = _resolve_topology(auto_network, parent, subnet, gateway)
        console.print(format_topology_table(topology))

        docker_manager = DockerManager()
        images = catalog.build_all(docker_manager)

        provisioner = MacvlanProvisioner(docker_manager)
        try:
            provisioner.setup(
                topology, host_interface=internet, internet_access=internet
            )
        finally:
            provisioner.close()

        console.print("[bold]=== Starting container launch workers ===[/bold]")
        pool = LeaseAcquisitionWorkerPool(
            DockerAddressAllocator(docker_manager),
            lease_interval=config.LEASE_INTERVAL,
        )
        result = asyncio.run(
            _run_pool(pool, images, workers, request_timeout, retry_backoff)
        )
        console.print(format_run_summary(result))

        if cleanup:
            _cleanup(docker_manager)
            print_success("Network cleaned up")
    except IpocalypseError as e:
        print_error(str(e))
        raise typer.Exit(1)
    finally:
        if docker_manager is not None:
            docker_manager.close()


@app.command("detect")
def detect_command(
    as_json: Annotated[bool, typer.Option("--json", help="Print as JSON")] = False,
    backend: BackendOption = NetworkBackend.PYROUTE2,
    log_level: LogLevelOption = LogLevel.WARNING,
):
    """Show the detected host network topology."""
    _apply_common(log_level, backend, config.NETWORK_NAME)
    try:
        topology = _resolve_topology(True, None, None, None)
    except IpocalypseError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(topology.to_dict()))
    else:
        console.print(format_topology_table(topology))


@app.command("setup-network")
def setup_network_command(
    internet: Annotated[
        bool, typer.Option("--internet", "-i", help="Enable NAT for the subnet")
    ] = False,
    network: NetworkOption = config.NETWORK_NAME,
    backend: BackendOption = NetworkBackend.PYROUTE2,
    log_level: LogLevelOption = LogLevel.INFO,
):
    """Create the macvlan network and host interface without launching anything."""
    _apply_common(log_level, backend, network)
    try:
        topology = _resolve_topology(True, None, None, None)
        console.print(format_topology_table(topology))

        docker_manager = DockerManager()
        provisioner = MacvlanProvisioner(docker_manager)
        try:
            provisioner.setup(topology, host_interface=True, internet_access=internet)
        finally:
            provisioner.close()
            docker_manager.close()
    except IpocalypseError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(
        f"Docker network '{config.NETWORK_NAME}' and host interface "
        f"'{config.HOST_MACVLAN_INTERFACE}' are ready"
    )


@app.command("cleanup")
def cleanup_command(
    network: NetworkOption = config.NETWORK_NAME,
    log_level: LogLevelOption = LogLevel.INFO,
):
    """Remove endpoint containers, the macvlan network and the host interface."""
    _apply_common(log_level, config.NETWORK_BACKEND, network)
    try:
        docker_manager = DockerManager()
        try:
            _cleanup(docker_manager)
        finally:
            docker_manager.close()
    except IpocalypseError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success("Cleanup complete")


@app.command("version")
def version():
    """Show version information."""
    from ipocalypse import __version__

    console.print(f"ipocalypse v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
