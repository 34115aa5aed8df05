"""Seam for the hosted generative-image model.

The model call itself lives outside this package.  A deployment installs an
object satisfying :class:`ImageGenerator` on ``app.state.generator``; the API
routes call it and hand the returned bytes to the artifact store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class GenerationError(RuntimeError):
    """The generative model failed to produce a result."""


@dataclass(frozen=True)
class GeneratedImage:
    """Image returned by the model.

    Attributes:
        data: Encoded image bytes; empty if the model returned no image.
        mime_type: MIME type of ``data``.
        description: Optional text the model returned alongside the image.
    """

    data: bytes
    mime_type: str = "image/png"
    description: str | None = None


class ImageGenerator(Protocol):
    """Text-to-image and image-edit operations of a hosted model."""

    def generate(self, prompt: str) -> GeneratedImage:
        """Generate an image from ``prompt``."""
        ...

    def edit(self, prompt: str, image: bytes, mime_type: str) -> GeneratedImage:
        """Produce an edited version of ``image`` following ``prompt``."""
        ...
