"""
Workload image catalog.

Resolves the directories containing Dockerfiles, assigns each one a tag
(``ipocalypse_{index}:latest``) and builds them sequentially before any
worker starts. The resulting reference list is read-only afterwards.
"""

from __future__ import annotations

import os

from docker.errors import APIError, BuildError

from ipocalypse.config import config
from ipocalypse.docker.client import DockerManager
from ipocalypse.exceptions import ConfigurationError, ImageBuildError
from ipocalypse.models.lease import WorkloadReference
from ipocalypse.utils.logger import get_logger

log = get_logger(__name__)

DOCKERFILE = "Dockerfile"


def discover_image_dirs(
    search_dir: str, prefix: str | None = None
) -> list[str]:
    """
    Find workload image directories by naming convention.

    Args:
        search_dir: Directory to scan (non-recursive).
        prefix: Required directory name prefix, e.g. "ipocalypse_".

    Returns:
        Sorted absolute paths of matching directories holding a Dockerfile.
    """
    prefix = prefix or config.IMAGE_DIR_PREFIX
    try:
        entries = sorted(os.listdir(search_dir))
    except OSError as e:
        raise ConfigurationError(f"Cannot scan {search_dir}: {e}") from e

    found = []
    for entry in entries:
        path = os.path.join(search_dir, entry)
        if not entry.startswith(prefix) or not os.path.isdir(path):
            continue
        if not os.path.isfile(os.path.join(path, DOCKERFILE)):
            log.debug(f"Skipping {path}: no {DOCKERFILE}")
            continue
        found.append(os.path.abspath(path))

    log.debug(f"Discovered {len(found)} image directories in {search_dir}")
    return found


class ImageCatalog:
    """
    Ordered, non-empty list of workload images.

    Attributes:
        references: Workload references in build order.
    """

    def __init__(self, references: list[WorkloadReference]):
        if not references:
            raise ConfigurationError("No workload image directories given")
        self.references = list(references)

    @classmethod
    def from_dirs(cls, dirs: list[str]) -> ImageCatalog:
        """
        Build a catalog from context directories, tagging them by position.

        Raises:
            ConfigurationError: If the list is empty or a directory has no
                Dockerfile.
        """
        references = []
        for index, directory in enumerate(d.strip() for d in dirs if d.strip()):
            if not os.path.isfile(os.path.join(directory, DOCKERFILE)):
                raise ConfigurationError(f"No {DOCKERFILE} found in {directory}")
            references.append(
                WorkloadReference(name=config.get_image_tag(index), context_dir=directory)
            )
        return cls(references)

    @classmethod
    def discover(
        cls, search_dir: str, prefix: str | None = None
    ) -> ImageCatalog:
        """Build a catalog from directories found by ``discover_image_dirs``."""
        prefix = prefix or config.IMAGE_DIR_PREFIX
        dirs = discover_image_dirs(search_dir, prefix)
        if not dirs:
            raise ConfigurationError(
                f"No '{prefix}*' directories with a {DOCKERFILE} in {search_dir}"
            )
        return cls.from_dirs(dirs)

    def build_all(self, docker_manager: DockerManager) -> list[WorkloadReference]:
        """
        Build every image in order, stopping at the first failure.

        Raises:
            ImageBuildError: If a build fails.
        """
        for ref in self.references:
            self.build(docker_manager, ref)
        return self.references

    def build(self, docker_manager: DockerManager, ref: WorkloadReference) -> None:
        log.info(f"Building image {ref.name} from directory {ref.context_dir}")
        try:
            _, build_logs = docker_manager.client.images.build(
                path=ref.context_dir,
                tag=ref.name,
                dockerfile=DOCKERFILE,
                rm=True,
            )
        except BuildError as e:
            for chunk in e.build_log:
                _log_build_chunk(chunk)
            raise ImageBuildError(str(e), ref.name) from e
        except APIError as e:
            raise ImageBuildError(str(e), ref.name) from e

        for chunk in build_logs:
            _log_build_chunk(chunk)
        log.info(f"Built image {ref.name}")

    def __len__(self) -> int:
        return len(self.references)

    def __iter__(self):
        return iter(self.references)


def _log_build_chunk(chunk: dict) -> None:
    line = chunk.get("stream") or chunk.get("status") or chunk.get("error")
    if line and line.strip():
        log.debug(line.rstrip())
