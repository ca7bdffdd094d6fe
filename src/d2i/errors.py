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
Error types raised by the image assembly pipeline.
"""
from typing import Optional


class D2IError(Exception):
    """Base class for every error the pipeline reports to the operator."""


class ConfigurationError(D2IError, ValueError):
    """Invalid or missing build configuration, detected before any build work."""


class MissingArtifactDirectoryError(D2IError, FileNotFoundError):
    """An artifact directory that should become a layer does not exist."""

    def __init__(self, name: str, path: str):
        super().__init__(f"Missing artifact directory '{name}': {path} does not exist")
        self.name = name
        self.path = path


class BuildEngineError(D2IError, RuntimeError):
    """The image-building engine failed to produce or publish the image."""


class RegistryError(BuildEngineError):
    """A registry rejected a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
