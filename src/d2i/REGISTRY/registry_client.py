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
Registry client for pulling base images and pushing built images.
Implements the parts of the Docker Registry HTTP API V2 the engine needs.
"""

import base64
import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Tuple, Union
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urljoin
from urllib.request import Request, urlopen

import structlog

from ..errors import RegistryError
from ..MODELS.container_spec import Credential
from .image_reference import ImageReference

logger = structlog.get_logger(__name__)

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MANIFEST_LISTS = (DOCKER_MANIFEST_LIST, OCI_INDEX)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')

Body = Union[bytes, BinaryIO, None]


def sha256_digest(content: bytes) -> str:
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


def parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    """
    Parse a WWW-Authenticate header.

    Returns:
        The lower-cased scheme and its parameters.
    """
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(rest))


class RegistryClient:
    """
    Client for one registry identity: a credential (or anonymous access) and
    the repository actions it needs ('pull' or 'pull,push').
    """

    def __init__(
        self,
        credential: Optional[Credential] = None,
        actions: str = "pull",
        cache_dir: Optional[str] = None,
        platform: Tuple[str, str] = ("linux", "amd64"),
        timeout: int = 60,
    ):
        """
        Initialize the registry client.

        Args:
            credential: Credential presented to the registry, or None.
            actions: Repository actions requested in token scopes.
            cache_dir: Directory to cache downloaded layers. Defaults to ~/.d2i/cache
            platform: (os, architecture) picked from manifest lists.
            timeout: Socket timeout in seconds.
        """
        if cache_dir:
            self.cache_dir = Path(cache_dir)
        else:
            self.cache_dir = Path.home() / ".d2i" / "cache"

        self.credential = credential
        self.actions = actions
        self.platform = platform
        self.timeout = timeout
        self._auth_tokens: Dict[str, str] = {}

    def _basic_auth(self) -> Optional[str]:
        if not self.credential:
            return None
        token = base64.b64encode(
            f"{self.credential.username}:{self.credential.password}".encode()
        ).decode()
        return f"Basic {token}"

    def _scopes(self, ref: ImageReference, extra: Optional[List[str]] = None) -> List[str]:
        return [f"repository:{ref.repository}:{self.actions}"] + list(extra or [])

    def _authenticate(self, ref: ImageReference, challenge: str, extra_scopes: Optional[List[str]] = None) -> Optional[str]:
        """Answer an authentication challenge with an Authorization header value."""
        scheme, params = parse_challenge(challenge)

        if scheme == "basic":
            return self._basic_auth()

        if scheme != "bearer" or "realm" not in params:
            raise RegistryError(f"Unsupported authentication challenge from {ref.registry}: {challenge}")

        query = [("scope", scope) for scope in self._scopes(ref, extra_scopes)]
        if "service" in params:
            query.insert(0, ("service", params["service"]))
        request = Request(f"{params['realm']}?{urlencode(query)}")
        basic = self._basic_auth()
        if basic:
            request.add_unredirected_header("Authorization", basic)

        try:
            with urlopen(request, timeout=self.timeout) as response:
                data = json.loads(response.read().decode())
        except HTTPError as e:
            raise RegistryError(
                f"Authentication with {ref.registry} failed: {e.code} {e.reason}", status=e.code
            ) from e
        except URLError as e:
            raise RegistryError(f"Cannot reach token service {params['realm']}: {e.reason}") from e

        token = data.get("token") or data.get("access_token")
        if not token:
            raise RegistryError(f"Token service {params['realm']} returned no token")
        return f"Bearer {token}"

    def _request(
        self,
        method: str,
        url: str,
        ref: ImageReference,
        data: Body = None,
        headers: Optional[Dict[str, str]] = None,
        extra_scopes: Optional[List[str]] = None,
        _retried: bool = False,
    ) -> Tuple[bytes, Dict[str, str], int]:
        """Make an authenticated request to the registry."""
        request = Request(url, data=data, method=method)
        for name, value in (headers or {}).items():
            request.add_header(name, value)

        cache_key = f"{ref.registry}/{ref.repository}"
        token = self._auth_tokens.get(cache_key)
        if token:
            request.add_unredirected_header("Authorization", token)

        try:
            with urlopen(request, timeout=self.timeout) as response:
                return response.read(), dict(response.headers), response.status
        except HTTPError as e:
            challenge = e.headers.get("WWW-Authenticate") if e.headers else None
            if e.code == 401 and challenge and not _retried:
                token = self._authenticate(ref, challenge, extra_scopes)
                if token:
                    self._auth_tokens[cache_key] = token
                    if hasattr(data, "seek"):
                        data.seek(0)
                    return self._request(method, url, ref, data, headers, extra_scopes, _retried=True)
            body = e.read().decode(errors="replace").strip()
            raise RegistryError(
                f"{method} {url} failed: {e.code} {e.reason}" + (f": {body}" if body else ""),
                status=e.code,
            ) from e
        except URLError as e:
            raise RegistryError(f"Cannot reach registry {ref.registry}: {e.reason}") from e

    def _blob_url(self, ref: ImageReference, digest: str) -> str:
        return f"{ref.registry_url}/v2/{ref.repository}/blobs/{digest}"

    def get_manifest(self, ref: ImageReference) -> Dict[str, Any]:
        """
        Get the image manifest, resolving manifest lists to a single platform.

        Args:
            ref: Image reference

        Returns:
            Manifest as a dictionary
        """
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{ref.tag_or_digest}"
        accept = ", ".join([DOCKER_MANIFEST_V2, DOCKER_MANIFEST_LIST, OCI_MANIFEST, OCI_INDEX])

        content, headers, _ = self._request("GET", url, ref, headers={"Accept": accept})
        manifest = json.loads(content.decode())

        if manifest.get("mediaType") in MANIFEST_LISTS or "manifests" in manifest:
            manifest = self._select_platform_manifest(ref, manifest)

        return manifest

    def _select_platform_manifest(
        self, ref: ImageReference, manifest_list: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Select the manifest matching the configured platform."""
        manifests = manifest_list.get("manifests", [])
        if not manifests:
            raise RegistryError(f"No manifests listed for {ref.full_name}")

        os_name, arch = self.platform
        chosen = manifests[0]
        for entry in manifests:
            platform_info = entry.get("platform", {})
            if platform_info.get("os") == os_name and platform_info.get("architecture") == arch:
                chosen = entry
                break

        new_ref = ImageReference(registry=ref.registry, repository=ref.repository, digest=chosen["digest"])
        return self.get_manifest(new_ref)

    def get_config(self, ref: ImageReference, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """
        Get the image configuration referenced by a manifest.

        Args:
            ref: Image reference
            manifest: Image manifest

        Returns:
            Image configuration as a dictionary
        """
        digest = manifest.get("config", {}).get("digest", "")
        if not digest:
            raise RegistryError(f"No config digest in manifest of {ref.full_name}")

        content, _, _ = self._request("GET", self._blob_url(ref, digest), ref)
        return json.loads(content.decode())

    def pull_blob(self, ref: ImageReference, digest: str) -> Path:
        """
        Download a blob into the layer cache, verifying its digest.

        Args:
            ref: Repository holding the blob
            digest: Blob digest

        Returns:
            Path to the cached blob
        """
        cache_path = self.cache_dir / "layers" / digest.replace(":", "_")
        if cache_path.exists():
            logger.debug("blob.cached", digest=digest)
            return cache_path

        logger.info("blob.pulling", repository=ref.repository, digest=digest)
        content, _, _ = self._request("GET", self._blob_url(ref, digest), ref)

        actual_digest = sha256_digest(content)
        if actual_digest != digest:
            raise RegistryError(f"Blob digest mismatch: expected {digest}, got {actual_digest}")

        cache_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = cache_path.with_suffix(".partial")
        with open(tmp_path, "wb") as f:
            f.write(content)
        os.replace(tmp_path, cache_path)

        return cache_path

    def blob_exists(self, ref: ImageReference, digest: str) -> bool:
        """Check whether a repository already holds a blob."""
        try:
            self._request("HEAD", self._blob_url(ref, digest), ref)
        except RegistryError as e:
            if e.status == 404:
                return False
            raise
        return True

    def start_upload(self, ref: ImageReference, mount_digest: Optional[str] = None, mount_from: Optional[str] = None) -> Optional[str]:
        """
        Open a blob upload session, optionally mounting the blob from another
        repository on the same registry.

        Returns:
            The upload location, or None when the blob was mounted.
        """
        url = f"{ref.registry_url}/v2/{ref.repository}/blobs/uploads/"
        extra_scopes = None
        if mount_digest and mount_from:
            url = f"{url}?{urlencode({'mount': mount_digest, 'from': mount_from})}"
            extra_scopes = [f"repository:{mount_from}:pull"]

        _, headers, status = self._request("POST", url, ref, data=b"", extra_scopes=extra_scopes)
        if status == 201:
            logger.debug("blob.mounted", repository=ref.repository, digest=mount_digest, source=mount_from)
            return None

        location = headers.get("Location") or headers.get("location")
        if not location:
            raise RegistryError(f"Registry {ref.registry} returned no upload location")
        return urljoin(url, location)

    def upload_blob(self, ref: ImageReference, digest: str, path: Path, location: Optional[str] = None) -> None:
        """
        Upload a blob in a single request.

        Args:
            ref: Destination repository
            digest: Blob digest
            path: File holding the blob
            location: Upload session from start_upload; opened when omitted
        """
        location = location or self.start_upload(ref)
        separator = "&" if "?" in location else "?"
        url = f"{location}{separator}{urlencode({'digest': digest})}"

        size = os.path.getsize(path)
        with open(path, "rb") as f:
            self._request(
                "PUT",
                url,
                ref,
                data=f,
                headers={"Content-Type": "application/octet-stream", "Content-Length": str(size)},
            )
        logger.info("blob.pushed", repository=ref.repository, digest=digest, size=size)

    def put_manifest(self, ref: ImageReference, tag: str, manifest: bytes, media_type: str = DOCKER_MANIFEST_V2) -> str:
        """
        Publish a manifest under a tag.

        Returns:
            The manifest digest.
        """
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{tag}"
        _, headers, _ = self._request("PUT", url, ref, data=manifest, headers={"Content-Type": media_type})
        digest = headers.get("Docker-Content-Digest") or sha256_digest(manifest)
        logger.info("manifest.pushed", image=ref.with_tag(tag).full_name, digest=digest)
        return digest
