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
Image reference parsing.
Parses references like 'demo:latest', 'gcr.io/distroless/java:11' or
'registry.example.com:5000/team/app@sha256:...'.
"""

from typing import List, Optional
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - demo -> docker.io/library/demo:latest
        - team/app:v1 -> docker.io/team/app:v1
        - gcr.io/distroless/java:11 -> gcr.io/distroless/java:11
        - localhost:5000/app@sha256:abc -> localhost:5000/app@sha256:abc
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"
    DOCKER_HUB_ALIASES = (
        "https://index.docker.io/v1/",
        "index.docker.io",
        "docker.io",
        "registry-1.docker.io",
    )

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'demo:latest', 'team/app:v1')

        Returns:
            Parsed ImageReference object.
        """
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        # A colon followed by a path segment is a registry port, not a tag
        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1 :]
            if "/" not in after_colon:
                tag = after_colon
                reference = reference[:last_colon]

        if not reference or (tag is not None and not tag):
            raise ValueError(f"Invalid image reference: {reference!r}")

        parts = reference.split("/")

        if len(parts) == 1:
            registry = cls.DEFAULT_REGISTRY
            repository = f"library/{parts[0]}"
        elif "." in parts[0] or ":" in parts[0] or parts[0] == "localhost":
            registry = parts[0]
            repository = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference

        if registry in cls.DOCKER_HUB_ALIASES:
            registry = cls.DEFAULT_REGISTRY
            if "/" not in repository:
                repository = f"library/{repository}"

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    def with_tag(self, tag: str) -> "ImageReference":
        """Return the same repository under another tag."""
        return replace(self, tag=tag, digest=None)

    @property
    def tag_or_digest(self) -> str:
        return self.digest or self.tag or self.DEFAULT_TAG

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        if self.tag:
            return f"{name}:{self.tag}"
        return name

    @property
    def short_name(self) -> str:
        """Get short image name (without registry if default)."""
        if self.registry == self.DEFAULT_REGISTRY:
            repo = self.repository
            if repo.startswith("library/"):
                repo = repo[len("library/"):]
            if self.digest:
                return f"{repo}@{self.digest}"
            if self.tag:
                return f"{repo}:{self.tag}"
            return repo
        return self.full_name

    @property
    def registry_url(self) -> str:
        """Get the registry URL for API calls."""
        if self.registry == self.DEFAULT_REGISTRY:
            return "https://registry-1.docker.io"
        if "://" in self.registry:
            return self.registry
        if self.registry.startswith("localhost") or self.registry.startswith("127.0.0.1"):
            return f"http://{self.registry}"
        return f"https://{self.registry}"

    @property
    def credential_keys(self) -> List[str]:
        """Keys under which the Docker CLI may store credentials for this registry."""
        if self.registry == self.DEFAULT_REGISTRY:
            return list(self.DOCKER_HUB_ALIASES)
        return [self.registry, f"https://{self.registry}", f"http://{self.registry}"]

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"
