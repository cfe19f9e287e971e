"""Error types raised by the classification component."""

from __future__ import annotations

from enum import StrEnum


class ClassifierError(Exception):
    """Base class for all classifier failures."""


class ConfigError(ClassifierError):
    """A required input (model asset, image) is missing."""


class InitError(ClassifierError):
    """Model loading or worker creation failed."""


class NotReadyError(ClassifierError):
    """classify() was called before a successful initialize()."""


class InferErrorKind(StrEnum):
    NULL_OUTPUT = "null_output"
    RUNTIME_FAULT = "runtime_fault"


class InferError(ClassifierError):
    """Inference did not produce a usable score vector."""

    def __init__(self, kind: InferErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
