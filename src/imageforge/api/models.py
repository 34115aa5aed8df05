"""Pydantic request models for the imageforge API.

These models define the JSON schema for the endpoints that take a body.
FastAPI uses them for automatic request validation, serialisation, and
OpenAPI documentation generation.

Models
------
GenerateRequest
    Payload for ``POST /api/generate``.
EditRequest
    Payload for ``POST /api/edit``: an instruction applied to a stored image.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        prompt: Text prompt sent to the image model.
    """

    prompt: str = Field(
        default="",
        description="Text prompt describing the image to generate.",
    )


class EditRequest(BaseModel):
    """Request body for the ``POST /api/edit`` endpoint.

    Attributes:
        prompt: Edit instruction sent to the image model.
        image_id: ID of a previously stored artifact to edit.
    """

    prompt: str = Field(
        default="",
        description="Edit instruction (e.g. 'make the sky a sunset').",
    )
    image_id: str = Field(
        default="",
        description="ID of a stored artifact to use as the source image.",
    )
