"""API route definitions."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from visionlabel.api.middleware import verify_api_key
from visionlabel.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    LabelsResponse,
    TargetConfidence,
)
from visionlabel.ml.errors import ConfigError, InferError, NotReadyError
from visionlabel.ml.postprocess import top_k
from visionlabel.ml.preprocessing import load_image

if TYPE_CHECKING:
    from visionlabel.config import Settings
    from visionlabel.ml.image_classifier import ImageClassifier
    from visionlabel.ml.inference import InferencePool
    from visionlabel.ml.postprocess import ClassificationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> ImageClassifier:
    classifier: ImageClassifier = request.app.state.classifier
    return classifier


def _build_response(result: ClassificationResult, classifier: ImageClassifier, k: int) -> ClassifyImageResponse:
    labels = classifier.labels
    tags = [
        ImageTag(label=labels.label_for(i), index=i, confidence=result.probabilities[i])
        for i in top_k(result.probabilities, k)
    ]
    target = None
    if result.target_label is not None:
        found = bool(result.target_found) and result.target_index is not None
        target = TargetConfidence(
            query=result.target_label,
            found=found,
            label=labels.label_for(result.target_index) if found and result.target_index is not None else None,
            index=result.target_index,
            confidence=result.target_probability,
        )
    return ClassifyImageResponse(
        label=result.best_label,
        index=result.best_index,
        confidence=result.best_probability,
        target=target,
        tags=tags,
    )


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image",
)
async def classify_image(request: Request, file: UploadFile, target: str | None = None) -> ClassifyImageResponse:
    """Classify an uploaded image, optionally reporting a target label's confidence."""
    settings = _get_settings(request)
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)

    if not classifier.ready:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Classifier is not initialized")

    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    try:
        image = await asyncio.to_thread(load_image, data, settings.max_image_pixels)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        result = await pool.run(classifier.classify, image, target)
    except TimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Classifier is busy") from exc
    except NotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ConfigError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except InferError as exc:
        logger.error("Inference failed (%s)", exc.kind, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return _build_response(result, classifier, settings.top_k)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    classifier = _get_classifier(request)
    return HealthResponse(
        status="ok" if classifier.ready else "degraded",
        gpu=settings.device == "cuda",
        ready=classifier.ready,
        model=classifier.model_name,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="List class labels",
)
async def list_labels(request: Request) -> LabelsResponse:
    """Return the loaded label table in model output order."""
    labels = list(_get_classifier(request).labels)
    return LabelsResponse(count=len(labels), labels=labels)
