"""
Selection of the publish destination and of the base image source.
"""
from typing import Optional, Union

from ..errors import ConfigurationError
from ..MODELS.container_spec import DaemonTarget, Destination, ImageKind, RegistryTarget
from ..REGISTRY.credentials import CredentialResolver
from ..REGISTRY.image_reference import ImageReference


class DestinationSelector:
    """
    Builds registry and daemon targets, resolving credentials for registry images.
    """
    def __init__(self, resolver: Optional[CredentialResolver] = None):
        self.resolver = resolver or CredentialResolver()

    def registry_image(
        self,
        image_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> RegistryTarget:
        """
        Parses an image name and attaches the credential resolved for it.

        :param image_name: Image reference, e.g. 'registry.example.com/team/app:1.0'.
        :param username: Explicit registry username.
        :param password: Explicit registry password.
        """
        try:
            reference = ImageReference.parse(image_name)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        credential = self.resolver.resolve(reference, username, password)
        return RegistryTarget(image_name=image_name, reference=reference, credential=credential)

    def base_image(
        self,
        image_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> RegistryTarget:
        """The pull-side source for the base image; always a registry image."""
        return self.registry_image(image_name, username, password)

    def select(
        self,
        kind: Union[str, ImageKind],
        image_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Destination:
        """
        Chooses where the finished image is published.

        :param kind: 'daemon' or 'registry'.
        :param image_name: Name of the image including tag.
        :param username: Push-side username, registry destinations only.
        :param password: Push-side password, registry destinations only.
        """
        try:
            kind = ImageKind(kind)
        except ValueError:
            supported = ", ".join(k.value for k in ImageKind)
            raise ConfigurationError(
                f"Unsupported image type '{kind}', expected one of: {supported}"
            ) from None

        try:
            reference = ImageReference.parse(image_name)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if reference.digest:
            raise ConfigurationError(
                f"Image name '{image_name}' is pinned to a digest; a built image can only be published under a tag"
            )

        if kind is ImageKind.DAEMON:
            return DaemonTarget(image_name=image_name)
        return self.registry_image(image_name, username, password)
