"""Shared test doubles for the ONNX collaborators."""

from __future__ import annotations

import struct
import zlib
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from visionlabel.config import Settings
from visionlabel.ml.model_manager import ModelHandle

if TYPE_CHECKING:
    from numpy.typing import NDArray

LABELS_TEXT = "n01440764 tench\nn01443537 goldfish, Carassius auratus\nn01484850 great white shark\nplain_label\n"


def png_header_only(width: int, height: int) -> bytes:
    """A valid PNG header declaring ``width`` x ``height`` with a single row of pixel data."""

    def chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)

    header = struct.pack(">IIBBBBB", width, height, 8, 0, 0, 0, 0)
    row = zlib.compress(b"\x00" * (width + 1))
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", row) + chunk(b"IEND", b"")


class FakeWorker:
    """Worker returning queued score vectors (or raising queued exceptions)."""

    def __init__(self, outputs: list[object] | None = None) -> None:
        self.outputs = list(outputs or [])
        self.inputs: list[NDArray[np.float32]] = []
        self.close_calls = 0

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.floating] | None:
        self.inputs.append(tensor.copy())
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return None if output is None else np.asarray(output, dtype=np.float32).reshape(1, -1)

    def readback(self, output: NDArray[np.floating]) -> NDArray[np.float32]:
        return np.asarray(output, dtype=np.float32).ravel()

    def close(self) -> None:
        self.close_calls += 1


class FakeModelManager:
    def __init__(self, worker: FakeWorker | None = None, error: Exception | None = None) -> None:
        self.worker = worker or FakeWorker()
        self.error = error
        self.loaded: list[str] = []

    def load_model(self, asset: str) -> ModelHandle:
        if self.error is not None:
            raise self.error
        self.loaded.append(asset)
        return ModelHandle(name=Path(asset).stem, path=Path(asset))

    def create_worker(self, model: ModelHandle) -> FakeWorker:
        return self.worker


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "model_asset": "/models/resnet50.onnx",
        "labels_path": None,
        "target_label": None,
        "models_dir": "/tmp/visionlabel_test_models",
        "image_path": None,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def labels_file(tmp_path: Path) -> Path:
    path = tmp_path / "labels.txt"
    path.write_text(LABELS_TEXT, encoding="utf-8")
    return path


@pytest.fixture()
def red_image() -> Image.Image:
    return Image.new("RGB", (64, 48), (255, 0, 0))


@pytest.fixture()
def image_file(tmp_path: Path, red_image: Image.Image) -> Path:
    path = tmp_path / "input.png"
    red_image.save(path)
    return path
