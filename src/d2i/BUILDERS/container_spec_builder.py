"""
Assembles the container specification handed to the build engine.
"""
import re
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from ..errors import ConfigurationError
from ..MODELS.container_spec import EPOCH, ContainerSpec, RegistryTarget
from .layer_builder import LayerBuilder
from .layering_policy import LayeringPolicy
from .tags import TagManager

_EPOCH_SECONDS = re.compile(r"[+-]?\d+")


def parse_creation_time(value: Optional[str]) -> datetime:
    """
    Parses a creation time given in epoch seconds. Missing values mean the epoch.
    """
    if value is None:
        return EPOCH
    if not _EPOCH_SECONDS.fullmatch(value):
        raise ConfigurationError(f"Invalid creation time '{value}': expected epoch seconds")
    try:
        return EPOCH + timedelta(seconds=int(value))
    except OverflowError as e:
        raise ConfigurationError(f"Invalid creation time '{value}': {e}") from e


def parse_labels(labels: Iterable[str]) -> Dict[str, str]:
    """
    Parses KEY=VALUE strings, splitting on the first '='. Later keys overwrite
    earlier ones.
    """
    parsed: Dict[str, str] = {}
    for label in labels:
        if "=" not in label:
            raise ConfigurationError(f"Invalid label '{label}': expected KEY=VALUE")
        key, value = label.split("=", 1)
        if not key:
            raise ConfigurationError(f"Invalid label '{label}': empty key")
        parsed[key] = value
    return parsed


class ContainerSpecBuilder:
    """
    Combines the base image, the artifact layers and the runtime settings into
    a single ContainerSpec.
    """
    def __init__(self, layer_builder: Optional[LayerBuilder] = None, policy: Optional[LayeringPolicy] = None):
        self.layer_builder = layer_builder or LayerBuilder()
        self.policy = policy or LayeringPolicy()

    def build(
        self,
        base_image: RegistryTarget,
        main: str,
        user: Optional[str] = None,
        creation_time: Optional[str] = None,
        labels: Iterable[str] = (),
        tags: Optional[TagManager] = None,
    ) -> ContainerSpec:
        """
        Builds the specification.

        :param base_image: Resolved base image source.
        :param main: Main namespace run by the entrypoint.
        :param user: User and group to run as, passed through unchanged.
        :param creation_time: Image creation time in epoch seconds.
        :param labels: KEY=VALUE label strings.
        :param tags: Additional tags for the published image.
        :return: The finished ContainerSpec.
        """
        created = parse_creation_time(creation_time)
        parsed_labels = parse_labels(labels)
        layers = [self.layer_builder.build(name) for name in self.policy.layer_order]

        return ContainerSpec(
            base_image=base_image,
            layers=layers,
            user=user,
            creation_time=created,
            working_directory=self.policy.working_directory,
            entrypoint=self.policy.entrypoint(main),
            labels=parsed_labels,
            additional_tags=tags.tags if tags else [],
        )
