"""Image introspection: turn ``image inspect`` output into ImageMetadata."""

from __future__ import annotations

import logging
from typing import Any

from enclaveforge.core.container_engine import ContainerEngine, ImageNotFoundError
from enclaveforge.models.image import ImageMetadata

logger = logging.getLogger(__name__)


def metadata_from_inspect(reference: str, data: dict[str, Any]) -> ImageMetadata:
    """Build ImageMetadata from one ``image inspect`` object.

    Null ``Cmd``/``Entrypoint``/``Labels`` (common in scratch-based images)
    become empty values.
    """
    config = data.get("Config") or {}
    return ImageMetadata(
        reference=reference,
        cmd=list(config.get("Cmd") or []),
        entrypoint=list(config.get("Entrypoint") or []),
        user=config.get("User") or "",
        labels=dict(config.get("Labels") or {}),
        os=data.get("Os") or "",
        architecture=data.get("Architecture") or "",
        repo_digests=list(data.get("RepoDigests") or []),
    )


class ImageIntrospector:
    """Reads configuration from local images, pulling when absent."""

    def __init__(self, engine: ContainerEngine) -> None:
        self._engine = engine

    async def inspect(self, image_ref: str) -> ImageMetadata:
        """Inspect a local image.  Raises ``ImageNotFoundError`` if absent."""
        data = await self._engine.image_inspect(image_ref)
        return metadata_from_inspect(image_ref, data)

    async def ensure_local(self, image_ref: str) -> ImageMetadata:
        """Inspect *image_ref*, pulling it for the engine's platform first if needed."""
        try:
            return await self.inspect(image_ref)
        except ImageNotFoundError:
            logger.info("Image %s not present locally; pulling", image_ref)
        await self._engine.pull(image_ref)
        return await self.inspect(image_ref)

    async def is_layered(self, image_ref: str) -> bool:
        return (await self.inspect(image_ref)).is_layered
