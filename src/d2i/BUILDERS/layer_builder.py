"""
Turns artifact directories into layer descriptors.
"""
import os
from typing import Optional

import structlog

from ..errors import MissingArtifactDirectoryError
from ..MODELS.container_spec import ArtifactDirectory, LayerDescriptor
from .layering_policy import mount_path
from .timestamps import FilePermissionsPolicy, TimestampPolicy

logger = structlog.get_logger(__name__)


class LayerBuilder:
    """
    Builds one layer per artifact directory found under the build output root.
    """
    def __init__(
        self,
        target_dir: str = "target",
        timestamp_policy: Optional[TimestampPolicy] = None,
        permissions_policy: Optional[FilePermissionsPolicy] = None,
    ):
        """
        :param target_dir: Build output root holding the artifact directories.
        :param timestamp_policy: Modification time rule for layer entries.
        :param permissions_policy: Permission rule for layer entries.
        """
        self.target_dir = target_dir
        self.timestamp_policy = timestamp_policy or TimestampPolicy()
        self.permissions_policy = permissions_policy or FilePermissionsPolicy()

    def artifact_directory(self, name: str) -> ArtifactDirectory:
        """
        Locates an artifact directory, failing if it does not exist.
        """
        source = os.path.join(self.target_dir, name)
        if not os.path.isdir(source):
            raise MissingArtifactDirectoryError(name, source)
        return ArtifactDirectory(name=name, source=source, mount_path=mount_path(name))

    def build(self, name: str) -> LayerDescriptor:
        """
        Creates the layer for an artifact directory.

        :param name: Artifact directory name, e.g. 'classes'.
        :return: A LayerDescriptor copying the directory to /app/<name>.
        """
        artifact = self.artifact_directory(name)
        layer = LayerDescriptor(
            name=artifact.name,
            source_directory=artifact.source,
            target_path=artifact.mount_path,
            timestamp_policy=self.timestamp_policy,
            permissions_policy=self.permissions_policy,
        )
        logger.debug("layer.described", name=name, source=str(artifact.source), target=artifact.mount_path)
        return layer
