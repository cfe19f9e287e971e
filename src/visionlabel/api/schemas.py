"""Pydantic request/response schemas for the VisionLabel API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    index: int
    confidence: float = Field(ge=0.0, le=1.0)


class TargetConfidence(BaseModel):
    """Confidence of a requested target label."""

    query: str
    found: bool
    label: str | None = None
    index: int | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    label: str = Field(description="Label of the most probable class ('Unknown' if unlabeled)")
    index: int = Field(description="Index of the most probable class")
    confidence: float = Field(ge=0.0, le=1.0)
    target: TargetConfidence | None = None
    tags: list[ImageTag] = Field(description="Top-k classes by descending confidence")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    ready: bool
    model: str | None
    concurrent_requests: int
    queue_depth: int


class LabelsResponse(BaseModel):
    """The loaded label table in model output order."""

    count: int
    labels: list[str]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
