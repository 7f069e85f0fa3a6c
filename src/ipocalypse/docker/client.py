"""
Docker client wrapper using docker-py SDK.

DockerManager owns the docker-py client shared by the image catalog, the
address allocator and the macvlan provisioner.
"""

import docker
from docker.errors import DockerException

from ipocalypse.exceptions import DockerConnectionError
from ipocalypse.utils.logger import get_logger

log = get_logger(__name__)


class DockerManager:
    """
    Connection to the local Docker daemon.

    Attributes:
        client: The docker-py client instance.
    """

    def __init__(self, timeout: int | None = None):
        """
        Initialize Docker client.

        Args:
            timeout: Request timeout in seconds. None means docker-py's default.

        Raises:
            DockerConnectionError: If connection to Docker daemon fails.
        """
        kwargs = {} if timeout is None else {"timeout": timeout}
        try:
            self.client = docker.from_env(**kwargs)
            self.client.ping()
            log.debug("Docker client initialized successfully")
        except DockerException as e:
            log.error(f"Failed to connect to Docker daemon: {e}")
            raise DockerConnectionError(f"Failed to connect to Docker: {e}") from e

    def close(self) -> None:
        self.client.close()
