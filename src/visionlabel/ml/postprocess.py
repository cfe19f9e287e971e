"""Post-processing of raw model scores into a classification result."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray

    from visionlabel.ml.labels import LabelTable


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of a single classification call."""

    best_index: int
    best_probability: float
    best_label: str
    probabilities: tuple[float, ...] = ()
    target_label: str | None = None
    target_index: int | None = None
    target_probability: float | None = None
    target_found: bool | None = None


def softmax(scores: ArrayLike) -> NDArray[np.float32]:
    """Compute softmax probabilities, shifted by the max score for stability.

    An empty input gives an empty output.
    """
    values = np.asarray(scores, dtype=np.float64).ravel()
    if values.size == 0:
        return np.empty(0, dtype=np.float32)
    exp_values = np.exp(values - np.max(values))
    return (exp_values / np.sum(exp_values)).astype(np.float32)


def argmax(probabilities: ArrayLike) -> int:
    """Index of the largest probability; ties go to the lowest index, -1 if empty."""
    values = np.asarray(probabilities).ravel()
    if values.size == 0:
        return -1
    # np.argmax returns the first occurrence of the maximum.
    return int(np.argmax(values))


def top_k(probabilities: ArrayLike, k: int) -> list[int]:
    """Indices of the ``k`` most probable classes, highest first."""
    values = np.asarray(probabilities).ravel()
    order = np.argsort(-values, kind="stable")
    return [int(i) for i in order[:k]]


def postprocess(
    scores: Sequence[float] | NDArray[np.floating],
    labels: LabelTable,
    target: str | None = None,
) -> ClassificationResult:
    """Turn a raw score vector into a ClassificationResult.

    Applies softmax, picks the arg-max class, resolves its label and, when
    ``target`` is a non-empty string, looks up the target's probability.
    """
    probabilities = softmax(scores)
    best_index = argmax(probabilities)
    best_probability = float(probabilities[best_index]) if best_index >= 0 else 0.0

    target_index: int | None = None
    target_probability: float | None = None
    target_found: bool | None = None
    if target and target.strip():
        target_index = labels.find(target)
        if target_index is not None and target_index < probabilities.size:
            target_probability = float(probabilities[target_index])
            target_found = True
        else:
            target_index = None
            target_found = False
    else:
        target = None

    return ClassificationResult(
        best_index=best_index,
        best_probability=best_probability,
        best_label=labels.label_for(best_index),
        probabilities=tuple(float(p) for p in probabilities),
        target_label=target,
        target_index=target_index,
        target_probability=target_probability,
        target_found=target_found,
    )
