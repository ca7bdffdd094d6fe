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
Loading built images into the local Docker daemon.
"""

import json
import subprocess
import tarfile
from pathlib import Path
from typing import Iterable, List

import structlog

from ..errors import BuildEngineError
from ..REGISTRY.image_reference import ImageReference

logger = structlog.get_logger(__name__)


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mode = 0o644
    return info


class DockerDaemonLoader:
    """
    Writes images in 'docker save' format and loads them with 'docker load'.
    """

    def __init__(self, executable: str = "docker"):
        """
        Args:
            executable: Docker CLI executable used to talk to the daemon.
        """
        self.executable = executable

    @staticmethod
    def repo_tags(image_name: str, additional_tags: Iterable[str]) -> List[str]:
        """
        Names the loaded image receives: the image itself plus its
        repository under each additional tag.
        """
        ref = ImageReference.parse(image_name)
        return [ref.short_name] + [ref.with_tag(tag).short_name for tag in additional_tags]

    def write_tarball(
        self,
        path: Path,
        config: bytes,
        config_digest: str,
        layers: List[Path],
        repo_tags: List[str],
    ) -> Path:
        """
        Write a 'docker save' style archive.

        Args:
            path: Archive to create.
            config: Image config JSON.
            config_digest: Digest of the config.
            layers: Layer blobs, bottom layer first.
            repo_tags: Names for the image.

        Returns:
            The archive path.
        """
        config_name = f"{config_digest.split(':', 1)[1]}.json"
        layer_names = [f"{i}-{Path(layer).name}" for i, layer in enumerate(layers)]
        manifest = [{"Config": config_name, "RepoTags": repo_tags, "Layers": layer_names}]

        config_path = path.with_name(config_name)
        config_path.write_bytes(config)
        manifest_path = path.with_name("manifest.json")
        manifest_path.write_text(json.dumps(manifest))

        with tarfile.open(path, "w") as tar:
            tar.add(str(config_path), arcname=config_name, filter=_normalize)
            for name, layer in zip(layer_names, layers):
                tar.add(str(layer), arcname=name, filter=_normalize)
            tar.add(str(manifest_path), arcname="manifest.json", filter=_normalize)

        return path

    def load(self, tarball: Path) -> str:
        """
        Load an archive into the daemon.

        Returns:
            The output of 'docker load'.
        """
        logger.info("daemon.loading", tarball=str(tarball))
        try:
            result = subprocess.run(
                [self.executable, "load", "--input", str(tarball)],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise BuildEngineError(f"Cannot run '{self.executable} load': {e}") from e

        if result.returncode != 0:
            message = (result.stderr or result.stdout).strip()
            raise BuildEngineError(f"'{self.executable} load' failed: {message}")

        return result.stdout.strip()
