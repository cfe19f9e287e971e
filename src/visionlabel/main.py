"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from visionlabel.api.routes import router
from visionlabel.config import Settings, get_settings
from visionlabel.ml.errors import ClassifierError
from visionlabel.ml.image_classifier import ImageClassifier
from visionlabel.ml.inference import InferencePool

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def start_classifier(settings: Settings) -> ImageClassifier:
    """Create the classifier, initialize it and run it once on the startup image.

    Initialization failures are logged; the classifier is returned unready.
    """
    classifier = ImageClassifier(settings)
    try:
        classifier.initialize()
    except ClassifierError:
        logger.exception("Classifier initialization failed")
        return classifier

    if settings.classify_on_startup and settings.image_path:
        classifier.run_once(settings.image_path)
    return classifier


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings
    configure_logging(settings)

    logger.info(
        "Starting VisionLabel (device=%s, model=%s, labels=%s, target=%s)",
        settings.device,
        settings.model_asset,
        settings.labels_path,
        settings.target_label,
    )

    app.state.classifier = start_classifier(settings)
    app.state.inference_pool = InferencePool()

    logger.info("VisionLabel ready")
    yield

    logger.info("Shutting down VisionLabel")
    app.state.inference_pool.shutdown()
    app.state.classifier.close()
    logger.info("VisionLabel shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="VisionLabel",
        description="ONNX image classification with synonym-aware target confidence",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
