"""Tests for the ONNX model manager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from conftest import make_settings

from visionlabel.ml.model_manager import ModelHandle, OnnxModelManager, OnnxWorker, parse_hub_reference

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_session(outputs: list[object]) -> MagicMock:
    session = MagicMock()
    model_input = MagicMock()
    model_input.name = "input"
    session.get_inputs.return_value = [model_input]
    session.run.return_value = outputs
    return session


# ---------------------------------------------------------------------------
# Hub references
# ---------------------------------------------------------------------------


class TestHubReference:
    def test_simple_reference(self) -> None:
        ref = parse_hub_reference("hf://onnx/resnet50/model.onnx")
        assert ref.repo_id == "onnx/resnet50"
        assert ref.filename == "model.onnx"
        assert ref.subfolder is None

    def test_reference_with_subfolder(self) -> None:
        ref = parse_hub_reference("hf://onnx/models/vision/classification/resnet50.onnx")
        assert ref.repo_id == "onnx/models"
        assert ref.subfolder == "vision/classification"
        assert ref.filename == "resnet50.onnx"

    def test_invalid_reference(self) -> None:
        with pytest.raises(ValueError, match="Invalid Hub model reference"):
            parse_hub_reference("hf://onnx/model.onnx")


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    def test_resolves_local_file(self, tmp_path: Path) -> None:
        model_file = tmp_path / "resnet50.onnx"
        model_file.touch()
        mgr = OnnxModelManager(make_settings())

        handle = mgr.load_model(str(model_file))

        assert handle == ModelHandle(name="resnet50", path=model_file)

    def test_missing_local_file(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(make_settings())
        with pytest.raises(FileNotFoundError, match="Model file not found"):
            mgr.load_model(str(tmp_path / "missing.onnx"))

    @patch("visionlabel.ml.model_manager.hf_hub_download")
    def test_hub_asset_calls_hf_hub_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "resnet50.onnx")
        mgr = OnnxModelManager(make_settings(models_dir=str(tmp_path)))

        path = mgr.resolve_model_path("hf://onnx/models/vision/resnet50.onnx")

        mock_download.assert_called_once_with(
            repo_id="onnx/models",
            filename="resnet50.onnx",
            subfolder="vision",
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "resnet50.onnx"

    @patch("visionlabel.ml.model_manager.hf_hub_download")
    def test_hub_asset_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "resnet50.onnx"
        model_file.touch()
        mgr = OnnxModelManager(make_settings(models_dir=str(tmp_path)))
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["hf://onnx/resnet50/resnet50.onnx"] = model_file

        path = mgr.resolve_model_path("hf://onnx/resnet50/resnet50.onnx")

        mock_download.assert_not_called()
        assert path == model_file

    @patch("visionlabel.ml.model_manager.InferenceSession")
    def test_create_worker_uses_providers(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.return_value = _make_session([])
        mgr = OnnxModelManager(make_settings(device="cuda"))

        worker = mgr.create_worker(ModelHandle(name="resnet50", path=Path("/m/resnet50.onnx")))

        assert worker.name == "resnet50"
        _, kwargs = mock_session_cls.call_args
        assert kwargs["providers"][0][0] == "CUDAExecutionProvider"
        assert kwargs["providers"][-1] == "CPUExecutionProvider"

    def test_provider_building_cpu(self) -> None:
        mgr = OnnxModelManager(make_settings(device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        mgr = OnnxModelManager(make_settings(device="cuda", gpu_mem_limit=1024))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert provider_opts["gpu_mem_limit"] == 1024
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        mgr = OnnxModelManager(make_settings(device="openvino"))
        assert len(mgr._providers) == 2
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"


# ---------------------------------------------------------------------------
# OnnxWorker tests
# ---------------------------------------------------------------------------


class TestOnnxWorker:
    def test_infer_returns_float_output(self) -> None:
        logits = np.array([[0.1, 0.9]], dtype=np.float32)
        session = _make_session([logits])
        worker = OnnxWorker(session, "m")
        tensor = np.zeros((1, 3, 224, 224), dtype=np.float32)

        output = worker.infer(tensor)

        assert output is logits
        session.run.assert_called_once()
        assert session.run.call_args.args[1]["input"] is tensor

    def test_infer_non_float_output_is_none(self) -> None:
        worker = OnnxWorker(_make_session([np.array([[3]], dtype=np.int64)]), "m")
        assert worker.infer(np.zeros((1, 3, 2, 2), dtype=np.float32)) is None

    def test_infer_no_outputs_is_none(self) -> None:
        worker = OnnxWorker(_make_session([]), "m")
        assert worker.infer(np.zeros((1, 3, 2, 2), dtype=np.float32)) is None

    def test_readback_flattens(self) -> None:
        worker = OnnxWorker(_make_session([]), "m")
        scores = worker.readback(np.array([[1.0, 2.0, 3.0]], dtype=np.float64))
        assert scores.dtype == np.float32
        assert scores.shape == (3,)

    def test_close_is_idempotent(self) -> None:
        worker = OnnxWorker(_make_session([]), "m")
        worker.close()
        worker.close()
        assert worker.closed
        with pytest.raises(RuntimeError, match="closed"):
            worker.infer(np.zeros((1, 3, 2, 2), dtype=np.float32))
