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
Registry credential resolution.

Explicit username/password pairs always win. Otherwise credentials are looked
up in the Docker CLI configuration (credential helpers, the default credential
store, then inline 'auths' entries). When nothing is found the image is
accessed anonymously and the registry decides whether that is acceptable.
"""

import base64
import json
import os
import subprocess
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from ..MODELS.container_spec import Credential
from .image_reference import ImageReference

logger = structlog.get_logger(__name__)


class DockerConfigCredentials:
    """
    Reads credentials from the Docker CLI configuration file.
    """

    def __init__(self, config_path: Optional[str] = None, env: Optional[Dict[str, str]] = None):
        """
        Args:
            config_path: Explicit path to config.json. Defaults to
                $DOCKER_CONFIG/config.json, then ~/.docker/config.json.
            env: Environment used to locate the configuration. Defaults to os.environ.
        """
        env = os.environ if env is None else env
        if config_path:
            self.config_path = Path(config_path)
        elif env.get("DOCKER_CONFIG"):
            self.config_path = Path(env["DOCKER_CONFIG"]) / "config.json"
        else:
            self.config_path = Path.home() / ".docker" / "config.json"

    def _load(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            return {}
        try:
            with open(self.config_path, "r") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.debug("docker_config.unreadable", path=str(self.config_path), error=str(e))
            return {}

    def lookup(self, ref: ImageReference) -> Optional[Credential]:
        """
        Find credentials for the registry of an image reference.

        Args:
            ref: Image whose registry host is looked up.

        Returns:
            The first credential found, or None.
        """
        config = self._load()
        if not config:
            return None

        helpers = config.get("credHelpers", {})
        for key in ref.credential_keys:
            if key in helpers:
                credential = self._from_helper(helpers[key], key)
                if credential:
                    return credential

        store = config.get("credsStore")
        if store:
            for key in ref.credential_keys:
                credential = self._from_helper(store, key)
                if credential:
                    return credential

        auths = config.get("auths", {})
        for key in ref.credential_keys:
            if key in auths:
                credential = self._from_auth_entry(auths[key], key)
                if credential:
                    return credential

        return None

    def _from_helper(self, helper: str, server: str) -> Optional[Credential]:
        """Ask a docker-credential-<helper> program for a server's credentials."""
        program = f"docker-credential-{helper}"
        try:
            result = subprocess.run(
                [program, "get"],
                input=server,
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("credential_helper.failed", helper=program, server=server, error=str(e))
            return None

        if result.returncode != 0:
            logger.debug("credential_helper.no_entry", helper=program, server=server)
            return None

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.debug("credential_helper.bad_output", helper=program, server=server)
            return None

        username, secret = data.get("Username"), data.get("Secret")
        if not username or not secret:
            return None
        return Credential(username=username, password=secret, source=program)

    def _from_auth_entry(self, entry: Dict[str, Any], server: str) -> Optional[Credential]:
        """Decode an inline 'auths' entry."""
        source = f"{self.config_path}#{server}"
        if entry.get("auth"):
            try:
                decoded = base64.b64decode(entry["auth"]).decode()
            except (ValueError, UnicodeDecodeError):
                logger.debug("docker_config.bad_auth", server=server)
                return None
            if ":" not in decoded:
                logger.debug("docker_config.bad_auth", server=server)
                return None
            username, password = decoded.split(":", 1)
            return Credential(username=username, password=password, source=source)

        if entry.get("username") and entry.get("password"):
            return Credential(username=entry["username"], password=entry["password"], source=source)

        return None


class CredentialResolver:
    """
    Resolves the credential used to pull or push one image.
    """

    def __init__(self, docker_config: Optional[DockerConfigCredentials] = None):
        self.docker_config = docker_config or DockerConfigCredentials()

    def resolve(
        self,
        ref: ImageReference,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[Credential]:
        """
        Resolve a credential for an image.

        Args:
            ref: Image reference whose registry needs authentication.
            username: Explicit username, used only together with password.
            password: Explicit password, used only together with username.

        Returns:
            The resolved Credential, or None for anonymous access.
        """
        if username is not None and password is not None:
            logger.debug("credentials.resolved", registry=ref.registry, source="explicit")
            return Credential(username=username, password=password)

        credential = self.docker_config.lookup(ref)
        if credential:
            logger.debug("credentials.resolved", registry=ref.registry, source=credential.source)
            return credential

        logger.debug("credentials.anonymous", registry=ref.registry)
        return None
