"""Abstract base class for asset annotators."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import Annotation, VideoAsset


class Annotator(ABC):
    """Abstract base class for annotation backends."""

    @abstractmethod
    def annotate(self, asset: VideoAsset) -> list[Annotation]:
        """
        Generate labels for an asset.

        Args:
            asset: Asset with decoded ``frames``.

        Returns:
            Annotations describing the clip.

        Raises:
            AnnotationError: If the backend fails.
        """
        pass

    def annotate_batch(
        self,
        assets: list[VideoAsset]
    ) -> dict[str, list[Annotation]]:
        """
        Annotate several assets.

        Args:
            assets: Assets to annotate.

        Returns:
            Mapping of asset id to annotations.
        """
        annotations = {}
        for asset in assets:
            annotations[asset.id] = self.annotate(asset)
        return annotations
