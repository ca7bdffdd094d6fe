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
Image-building engine that composes images directly from registry blobs.

The base image is read through the Registry API, new layers are archived
locally, and the result is either pushed to a registry or loaded into the
local Docker daemon.
"""

import copy
import json
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from ..errors import BuildEngineError
from ..MODELS.container_spec import BuildResult, ContainerSpec, Credential, Destination, RegistryTarget
from ..REGISTRY.registry_client import DOCKER_MANIFEST_V2, OCI_MANIFEST, RegistryClient, sha256_digest
from .base import BuildEngine
from .daemon import DockerDaemonLoader
from .layer_archive import LayerBlob, write_layer

logger = structlog.get_logger(__name__)

DOCKER_CONFIG_MEDIA_TYPE = "application/vnd.docker.container.image.v1+json"
OCI_CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar+gzip"

ClientFactory = Callable[[Optional[Credential], str], RegistryClient]


def _canonical_json(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def _is_oci(manifest: Dict[str, Any]) -> bool:
    if manifest.get("mediaType"):
        return manifest["mediaType"] == OCI_MANIFEST
    return manifest.get("config", {}).get("mediaType") == OCI_CONFIG_MEDIA_TYPE


def compose_config(base_config: Dict[str, Any], spec: ContainerSpec, blobs: List[LayerBlob]) -> Dict[str, Any]:
    """
    Derive the image config from the base image config.

    Args:
        base_config: Config of the base image.
        spec: Container specification.
        blobs: Archived layers, in spec order.

    Returns:
        The new image config.
    """
    config = copy.deepcopy(base_config)
    created = spec.creation_time.strftime("%Y-%m-%dT%H:%M:%SZ")
    config["created"] = created
    config.pop("container", None)
    config.pop("container_config", None)

    container = dict(config.get("config") or {})
    if spec.user is not None:
        container["User"] = spec.user
    container["WorkingDir"] = spec.working_directory
    container["Entrypoint"] = list(spec.entrypoint)
    container.pop("Cmd", None)

    labels = dict(container.get("Labels") or {})
    labels.update(spec.labels)
    if labels:
        container["Labels"] = labels
    config["config"] = container

    rootfs = dict(config.get("rootfs") or {"type": "layers"})
    rootfs["diff_ids"] = list(rootfs.get("diff_ids", [])) + [blob.diff_id for blob in blobs]
    config["rootfs"] = rootfs

    history = list(config.get("history", []))
    for blob in blobs:
        history.append({"created": created, "created_by": "d2i", "comment": blob.name})
    config["history"] = history

    return config


def compose_manifest(
    base_manifest: Dict[str, Any],
    config: bytes,
    blobs: List[LayerBlob],
) -> Tuple[Dict[str, Any], str]:
    """
    Build the manifest of the new image in the base manifest's format.

    Returns:
        The manifest and its media type.
    """
    if _is_oci(base_manifest):
        media_type, config_type, layer_type = OCI_MANIFEST, OCI_CONFIG_MEDIA_TYPE, OCI_LAYER_MEDIA_TYPE
    else:
        media_type, config_type, layer_type = DOCKER_MANIFEST_V2, DOCKER_CONFIG_MEDIA_TYPE, None

    layers = [dict(layer) for layer in base_manifest.get("layers", [])]
    for blob in blobs:
        descriptor = blob.descriptor()
        if layer_type:
            descriptor["mediaType"] = layer_type
        layers.append(descriptor)

    manifest = {
        "schemaVersion": 2,
        "mediaType": media_type,
        "config": {"mediaType": config_type, "size": len(config), "digest": sha256_digest(config)},
        "layers": layers,
    }
    return manifest, media_type


class OciBuildEngine(BuildEngine):
    """
    Builds images on top of a registry base image without a Docker daemon;
    the daemon is only used to load the result for daemon destinations.
    """

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        client_factory: Optional[ClientFactory] = None,
        daemon: Optional[DockerDaemonLoader] = None,
    ):
        """
        Args:
            cache_dir: Cache for downloaded base layers. Defaults to ~/.d2i/cache
            client_factory: Creates a registry client for a credential and
                the repository actions it needs.
            daemon: Loader used for daemon destinations.
        """
        self.cache_dir = cache_dir
        self.client_factory = client_factory or self._default_client
        self.daemon = daemon or DockerDaemonLoader()

    def _default_client(self, credential: Optional[Credential], actions: str) -> RegistryClient:
        return RegistryClient(credential=credential, actions=actions, cache_dir=self.cache_dir)

    def containerize(self, spec: ContainerSpec, destination: Destination) -> BuildResult:
        start = time.monotonic()
        base = spec.base_image
        pull_client = self.client_factory(base.credential, "pull")

        logger.info("base_image.resolving", image=base.reference.full_name)
        base_manifest = pull_client.get_manifest(base.reference)
        base_config = pull_client.get_config(base.reference, base_manifest)

        with tempfile.TemporaryDirectory(prefix="d2i-") as work:
            work_dir = Path(work)
            blobs = []
            for layer in spec.layers:
                blob = write_layer(layer, work_dir / "layers")
                logger.info("layer.built", name=layer.name, digest=blob.digest, size=blob.size)
                blobs.append(blob)

            config = _canonical_json(compose_config(base_config, spec, blobs))
            manifest, media_type = compose_manifest(base_manifest, config, blobs)
            manifest_bytes = _canonical_json(manifest)
            manifest_digest = sha256_digest(manifest_bytes)

            if isinstance(destination, RegistryTarget):
                manifest_digest = self._push(
                    spec, destination, pull_client, base_manifest, blobs, config, manifest_bytes, media_type, work_dir
                )
            else:
                self._load(spec, destination.image_name, pull_client, base_manifest, blobs, config, work_dir)

        return BuildResult(
            image_id=sha256_digest(config),
            digest=manifest_digest,
            elapsed_seconds=time.monotonic() - start,
        )

    def _push(
        self,
        spec: ContainerSpec,
        destination: RegistryTarget,
        pull_client: RegistryClient,
        base_manifest: Dict[str, Any],
        blobs: List[LayerBlob],
        config: bytes,
        manifest: bytes,
        media_type: str,
        work_dir: Path,
    ) -> str:
        """Push every missing blob, then the manifest under each tag."""
        base_ref = spec.base_image.reference
        target = destination.reference
        push_client = self.client_factory(destination.credential, "pull,push")
        same_registry = base_ref.registry == target.registry

        for layer in base_manifest.get("layers", []):
            digest = layer["digest"]
            if push_client.blob_exists(target, digest):
                continue
            location = None
            if same_registry:
                location = push_client.start_upload(target, mount_digest=digest, mount_from=base_ref.repository)
                if location is None:
                    continue
            path = pull_client.pull_blob(base_ref, digest)
            push_client.upload_blob(target, digest, path, location)

        for blob in blobs:
            if not push_client.blob_exists(target, blob.digest):
                push_client.upload_blob(target, blob.digest, blob.path)

        config_digest = sha256_digest(config)
        if not push_client.blob_exists(target, config_digest):
            config_path = work_dir / "config.json"
            config_path.write_bytes(config)
            push_client.upload_blob(target, config_digest, config_path)

        digest = push_client.put_manifest(target, target.tag_or_digest, manifest, media_type)
        for tag in spec.additional_tags:
            push_client.put_manifest(target, tag, manifest, media_type)
        return digest

    def _load(
        self,
        spec: ContainerSpec,
        image_name: str,
        pull_client: RegistryClient,
        base_manifest: Dict[str, Any],
        blobs: List[LayerBlob],
        config: bytes,
        work_dir: Path,
    ) -> None:
        """Assemble a 'docker save' archive and load it into the daemon."""
        base_ref = spec.base_image.reference
        layers = [pull_client.pull_blob(base_ref, layer["digest"]) for layer in base_manifest.get("layers", [])]
        layers += [blob.path for blob in blobs]

        try:
            repo_tags = self.daemon.repo_tags(image_name, spec.additional_tags)
        except ValueError as e:
            raise BuildEngineError(f"Invalid image name '{image_name}': {e}") from e

        archive_dir = work_dir / "archive"
        archive_dir.mkdir()
        tarball = self.daemon.write_tarball(
            archive_dir / "image.tar", config, sha256_digest(config), layers, repo_tags
        )
        output = self.daemon.load(tarball)
        logger.debug("daemon.loaded", output=output, tags=repo_tags)
