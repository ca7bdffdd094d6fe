# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Models describing a container image under assembly: layers, credentials,
publish destinations, the finished container specification and the build result.
"""
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..REGISTRY.image_reference import ImageReference

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _raise(error: OSError) -> None:
    raise error


class ImageKind(str, Enum):
    """
    Where a finished image is published.
    """
    DAEMON = "daemon"
    REGISTRY = "registry"


class Credential(BaseModel):
    """
    Registry authentication material. The secret is kept out of repr output.
    """
    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)
    source: str = "explicit"


class ArtifactDirectory(BaseModel):
    """
    A directory of build outputs destined to become one layer.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    source: Path
    mount_path: str


class LayerEntry(BaseModel):
    """
    A single file or directory placed into a layer.
    """
    model_config = ConfigDict(frozen=True)

    source: Path
    target: str
    mode: int
    modification_time: datetime
    is_directory: bool = False


class LayerDescriptor(BaseModel):
    """
    An immutable description of one layer: a source directory copied
    recursively to a target mount path with the given timestamp and
    permission rules.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    source_directory: Path
    target_path: str
    timestamp_policy: Any
    permissions_policy: Any

    def entries(self) -> List[LayerEntry]:
        """
        Lists the layer contents, sorted by target path, starting with the
        mount directory itself.

        Symbolic links to directories are followed. A link that points back at
        one of its own ancestors is listed as an empty directory. An unreadable
        directory raises OSError instead of leaving the layer partial.
        """
        root = self.source_directory
        entries = [self._entry(root, self.target_path, is_directory=True)]

        for dirpath, dirnames, filenames in os.walk(root, onerror=_raise, followlinks=True):
            dirnames.sort()
            listed = list(dirnames)
            dirnames[:] = [d for d in dirnames if not self._loops_back(dirpath, d)]
            current = Path(dirpath)
            for name in listed + sorted(filenames):
                source = current / name
                relative = source.relative_to(root).as_posix()
                target = f"{self.target_path.rstrip('/')}/{relative}"
                entries.append(self._entry(source, target, is_directory=source.is_dir()))

        return sorted(entries, key=lambda e: e.target)

    def _loops_back(self, dirpath: str, name: str) -> bool:
        real = os.path.realpath(os.path.join(dirpath, name))
        root = os.path.normpath(str(self.source_directory))
        parent = os.path.normpath(dirpath)
        while True:
            if os.path.realpath(parent) == real:
                return True
            if parent == root or os.path.dirname(parent) == parent:
                return False
            parent = os.path.dirname(parent)

    def _entry(self, source: Path, target: str, is_directory: bool) -> LayerEntry:
        return LayerEntry(
            source=source,
            target=target,
            mode=self.permissions_policy.mode(source, target, is_directory),
            modification_time=self.timestamp_policy.modification_time(source, target),
            is_directory=is_directory,
        )


class DaemonTarget(BaseModel):
    """
    Publish to the local Docker daemon under an image name.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal[ImageKind.DAEMON] = ImageKind.DAEMON
    image_name: str


class RegistryTarget(BaseModel):
    """
    A registry image with the credential used to access it. Used both for
    push destinations and for the base image pull source.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal[ImageKind.REGISTRY] = ImageKind.REGISTRY
    image_name: str
    reference: ImageReference
    credential: Optional[Credential] = None


Destination = Union[DaemonTarget, RegistryTarget]


class ContainerSpec(BaseModel):
    """
    The complete description of the image to build, handed to a BuildEngine.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    base_image: RegistryTarget
    layers: List[LayerDescriptor]
    user: Optional[str] = None
    creation_time: datetime = EPOCH
    working_directory: str = "/app"
    entrypoint: List[str]
    labels: Dict[str, str] = {}
    additional_tags: List[str] = []


class BuildResult(BaseModel):
    """
    Identity of a built image as reported by the BuildEngine.
    """
    image_id: str
    digest: str
    elapsed_seconds: float = 0.0

    @property
    def image_id_hash(self) -> str:
        return self.image_id.split(":", 1)[-1]

    @property
    def digest_hash(self) -> str:
        return self.digest.split(":", 1)[-1]
