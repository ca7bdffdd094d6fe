"""
Model for the parsed build configuration.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ..errors import ConfigurationError
from .container_spec import ImageKind

DEFAULT_BASE_IMAGE = "gcr.io/distroless/java:11"
DEFAULT_TARGET_DIR = "target"


class BuildOptions(BaseModel):
    """
    Every option that controls one image build. Values are kept exactly as
    supplied; parsing and validation of individual fields happens in the
    builders that consume them.
    """
    model_config = ConfigDict(extra="forbid")

    main: Optional[str] = None
    image_name: Optional[str] = None
    image_type: str = ImageKind.DAEMON.value
    base_image: str = DEFAULT_BASE_IMAGE
    creation_time: Optional[str] = None
    additional_tags: List[str] = []
    labels: List[str] = []
    user: Optional[str] = None

    from_registry_username: Optional[str] = None
    from_registry_password: Optional[str] = None
    to_registry_username: Optional[str] = None
    to_registry_password: Optional[str] = None

    target_dir: str = DEFAULT_TARGET_DIR
    cache_dir: Optional[str] = None
    quiet: bool = False
    verbose: bool = False

    def validate_required(self) -> None:
        """
        Raises ConfigurationError when a required option is missing or the
        image type is not one of the supported kinds.
        """
        missing = [name for name in ("main", "image_name") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing required option(s): {', '.join(missing)}")

        supported = [kind.value for kind in ImageKind]
        if self.image_type not in supported:
            raise ConfigurationError(
                f"Unsupported image type '{self.image_type}', expected one of: {', '.join(supported)}"
            )
