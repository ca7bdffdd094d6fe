"""
Drives one image build from parsed options to a published image.
"""
import time
from typing import Optional, Tuple

import structlog

from ..ENGINE.base import BuildEngine
from ..MODELS.build_options import BuildOptions
from ..MODELS.container_spec import BuildResult, ContainerSpec, Destination, ImageKind
from .container_spec_builder import ContainerSpecBuilder, parse_creation_time, parse_labels
from .destination import DestinationSelector
from .layer_builder import LayerBuilder
from .tags import TagManager

logger = structlog.get_logger(__name__)

ACTIONS = {
    ImageKind.DAEMON: "Built container",
    ImageKind.REGISTRY: "Built and pushed container",
}


class ImageBuilder:
    """
    Validates the options, assembles the container specification and the
    destination, and hands both to a BuildEngine.

    Progress is logged through structlog and never configured here. Until the
    embedding application configures structlog, for example with
    d2i.UTILS.logging.configure_logging, structlog's defaults print every
    event, debug included, to stdout.
    """
    def __init__(self, engine: Optional[BuildEngine] = None, selector: Optional[DestinationSelector] = None):
        """
        Initializes the ImageBuilder.

        :param engine: Engine that produces and publishes the image.
        :param selector: Destination selector; resolves registry credentials.
        """
        if engine is None:
            from ..ENGINE.oci_engine import OciBuildEngine
            engine = OciBuildEngine()
        self.engine = engine
        self.selector = selector or DestinationSelector()

    def prepare(self, options: BuildOptions) -> Tuple[ContainerSpec, Destination]:
        """
        Builds the ContainerSpec and Destination for the options. Configuration
        errors are raised before any artifact directory is read.
        """
        options.validate_required()
        parse_creation_time(options.creation_time)
        parse_labels(options.labels)

        base_image = self.selector.base_image(
            options.base_image,
            options.from_registry_username,
            options.from_registry_password,
        )
        destination = self.selector.select(
            options.image_type,
            options.image_name,
            options.to_registry_username,
            options.to_registry_password,
        )

        spec_builder = ContainerSpecBuilder(layer_builder=LayerBuilder(options.target_dir))
        spec = spec_builder.build(
            base_image=base_image,
            main=options.main,
            user=options.user,
            creation_time=options.creation_time,
            labels=options.labels,
            tags=TagManager(options.additional_tags),
        )
        return spec, destination

    def build(self, options: BuildOptions) -> BuildResult:
        """
        Runs the whole pipeline.

        :param options: Parsed build options.
        :return: The engine's result, with elapsed time covering the whole build.
        """
        start = time.monotonic()
        spec, destination = self.prepare(options)
        logger.info(
            "image.building",
            image=options.image_name,
            destination=destination.kind.value,
            layers=[layer.name for layer in spec.layers],
        )
        result = self.engine.containerize(spec, destination)
        return result.model_copy(update={"elapsed_seconds": time.monotonic() - start})

    @staticmethod
    def report(options: BuildOptions, result: BuildResult) -> str:
        """
        The line printed for the operator after a successful build.
        """
        action = ACTIONS[ImageKind(options.image_type)]
        return (
            f"\U0001F69C {action} {options.image_name} "
            f"with ImageId/digest {result.image_id_hash} "
            f"Container/digest {result.digest_hash} "
            f"in {result.elapsed_seconds:.2f}s"
        )
