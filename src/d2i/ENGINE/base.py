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
The contract between the assembly pipeline and an image-building engine.
"""
from abc import ABC, abstractmethod

from ..MODELS.container_spec import BuildResult, ContainerSpec, Destination


class BuildEngine(ABC):
    """
    Turns a finished ContainerSpec into an image and publishes it.
    Implementations raise BuildEngineError on failure and never retry.
    """

    @abstractmethod
    def containerize(self, spec: ContainerSpec, destination: Destination) -> BuildResult:
        """
        Build the image described by spec and publish it to destination,
        together with spec.additional_tags.

        Args:
            spec: Fully built container specification.
            destination: Daemon or registry target.

        Returns:
            Identity of the published image.
        """
