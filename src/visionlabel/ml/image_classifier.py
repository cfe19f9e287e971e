"""Image classification component.

Owns one inference worker, one fixed-shape input buffer and the label table
for its whole lifetime. ``classify`` is synchronous and must not be called
concurrently on the same instance.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from visionlabel.ml.errors import (
    ClassifierError,
    ConfigError,
    InferError,
    InferErrorKind,
    InitError,
    NotReadyError,
)
from visionlabel.ml.labels import LabelTable
from visionlabel.ml.model_manager import OnnxModelManager
from visionlabel.ml.postprocess import ClassificationResult, postprocess
from visionlabel.ml.preprocessing import image_to_tensor, input_shape, load_image

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import NDArray

    from visionlabel.config import Settings
    from visionlabel.ml.model_manager import ModelManager, Worker
    from visionlabel.ml.preprocessing import ImageSource

logger = logging.getLogger(__name__)


class ImageClassifier:
    """Loads a model once and classifies images against a label table."""

    def __init__(
        self,
        settings: Settings,
        model_manager: ModelManager | None = None,
        labels: LabelTable | None = None,
    ) -> None:
        self._settings = settings
        self._model_manager = model_manager or OnnxModelManager(settings)
        self._labels = labels if labels is not None else LabelTable.from_file(settings.labels_path)
        self._target = settings.target_label
        self._shape = input_shape(settings.input_size)

        self._worker: Worker | None = None
        self._input: NDArray[np.float32] | None = None
        self._model_name: str | None = None

    # -- Properties ---------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self._worker is not None and self._input is not None

    @property
    def labels(self) -> LabelTable:
        return self._labels

    @property
    def model_name(self) -> str | None:
        return self._model_name

    @property
    def input_shape(self) -> tuple[int, int, int, int]:
        return self._shape

    # -- Lifecycle ----------------------------------------------------------

    def initialize(self, model_asset: str | None = None) -> None:
        """Load the model and create the worker and input buffer.

        Raises:
            ConfigError: If no model asset is given or configured.
            InitError: If loading the model or creating the worker fails.
        """
        asset = model_asset or self._settings.model_asset
        if not asset:
            raise ConfigError("Model asset is not assigned")

        self.close()
        logger.info("Loading model %s", asset)
        try:
            model = self._model_manager.load_model(asset)
            worker = self._model_manager.create_worker(model)
        except Exception as exc:
            raise InitError(f"Error during initialization: {exc}") from exc

        self._worker = worker
        self._input = np.zeros(self._shape, dtype=np.float32)
        self._model_name = model.name
        logger.info("Classifier ready (model=%s, input=%s, labels=%d)", model.name, self._shape, len(self._labels))

    def close(self) -> None:
        """Release the worker and input buffer. Safe to call more than once."""
        worker, self._worker = self._worker, None
        self._input = None
        self._model_name = None
        if worker is not None:
            worker.close()

    def __enter__(self) -> ImageClassifier:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -- Classification -----------------------------------------------------

    def classify(self, image: ImageSource | None, target: str | None = None) -> ClassificationResult:
        """Classify ``image`` and optionally report the confidence of ``target``.

        ``target`` overrides the configured target label when given.

        Raises:
            NotReadyError: If initialize() has not succeeded.
            ConfigError: If ``image`` is None.
            InferError: If inference fails or yields no usable output.
        """
        if self._worker is None or self._input is None:
            raise NotReadyError("Worker or input tensor not initialized")
        if image is None:
            raise ConfigError("Input image is not assigned")

        scores = self._run_inference(self._worker, self._input, image)
        result = postprocess(scores, self._labels, target if target is not None else self._target)
        self._log_result(result)
        return result

    def run_once(self, image: ImageSource | None, target: str | None = None) -> ClassificationResult | None:
        """Initialize if needed, then classify once, logging any failure."""
        try:
            if not self.ready:
                self.initialize()
            return self.classify(image, target)
        except ClassifierError:
            logger.exception("Classification run failed")
            return None

    # -- Internal -----------------------------------------------------------

    def _run_inference(
        self, worker: Worker, buffer: NDArray[np.float32], image: ImageSource
    ) -> NDArray[np.float32]:
        try:
            logger.debug("Converting image to tensor. Shape: %s", self._shape)
            pil_image = load_image(image, max_pixels=self._settings.max_image_pixels)
            image_to_tensor(pil_image, self._shape, out=buffer)

            logger.debug("Running inference...")
            output = worker.infer(buffer)
            if output is None:
                raise InferError(
                    InferErrorKind.NULL_OUTPUT,
                    "Output tensor is null; check that the model has a float output",
                )

            scores = worker.readback(output)
            logger.debug("Inference complete. Output shape: %s", output.shape)
        except InferError:
            raise
        except Exception as exc:
            raise InferError(InferErrorKind.RUNTIME_FAULT, f"Error during inference: {exc}") from exc

        if scores.size == 0:
            raise InferError(InferErrorKind.NULL_OUTPUT, "No results downloaded from output tensor")
        return scores

    def _log_result(self, result: ClassificationResult) -> None:
        logger.info(
            "Predicted Class: %s (Index: %d) with Confidence: %.2f%%",
            result.best_label,
            result.best_index,
            result.best_probability * 100,
        )
        if result.target_label is None:
            return
        if result.target_found and result.target_index is not None:
            logger.info(
                "Target '%s' (Index: %d) Confidence: %.2f%%",
                self._labels.label_for(result.target_index),
                result.target_index,
                (result.target_probability or 0.0) * 100,
            )
        else:
            logger.warning("Target object '%s' not found in labels list.", result.target_label)
