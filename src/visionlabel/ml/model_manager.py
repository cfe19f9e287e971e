"""Model manager: resolve, load and run ONNX classification models.

Model assets are local ``.onnx`` paths or Hugging Face Hub references of the
form ``hf://<owner>/<repo>/<path/in/repo.onnx>``. Hub assets are downloaded
into ``models_dir`` once per process. Each loaded model gets an
``OnnxWorker`` wrapping an ONNX Runtime InferenceSession bound to the
configured execution provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

import numpy as np
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from visionlabel.config import Settings

logger = logging.getLogger(__name__)

HF_SCHEME = "hf://"


# ---------------------------------------------------------------------------
# Protocols (kept for test mocking)
# ---------------------------------------------------------------------------


class Worker(Protocol):
    """A long-lived inference session bound to one model."""

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.floating] | None:
        """Run the model; return its raw output or None if it is unusable."""
        ...

    def readback(self, output: NDArray[np.floating]) -> NDArray[np.float32]:
        """Copy a raw output into a flat host float vector."""
        ...

    def close(self) -> None:
        """Release the session."""
        ...


class ModelManager(Protocol):
    """Protocol for model loading and worker creation."""

    def load_model(self, asset: str) -> ModelHandle:
        """Resolve a model asset and return a handle to it."""
        ...

    def create_worker(self, model: ModelHandle) -> Worker:
        """Create an inference worker for a loaded model."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelHandle:
    """A resolved model asset."""

    name: str
    path: Path


@dataclass(frozen=True)
class HubReference:
    repo_id: str
    filename: str
    subfolder: str | None


def parse_hub_reference(asset: str) -> HubReference:
    """Split ``hf://owner/repo/sub/dir/model.onnx`` into its parts."""
    parts = PurePosixPath(asset.removeprefix(HF_SCHEME)).parts
    if len(parts) < 3:
        raise ValueError(f"Invalid Hub model reference: {asset!r} (expected hf://<owner>/<repo>/<file>)")
    subfolder = "/".join(parts[2:-1]) or None
    return HubReference(repo_id=f"{parts[0]}/{parts[1]}", filename=parts[-1], subfolder=subfolder)


class OnnxWorker:
    """Runs a single ONNX model on the first input and first output."""

    def __init__(self, session: InferenceSession, name: str) -> None:
        self._session: InferenceSession | None = session
        self._name = name
        self._input_name = session.get_inputs()[0].name

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._session is None

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.floating] | None:
        """Run the model. Returns None if the first output is not a float array."""
        if self._session is None:
            raise RuntimeError(f"Worker for {self._name} is closed")
        outputs = self._session.run(None, {self._input_name: tensor})
        if not outputs:
            return None
        output = outputs[0]
        if not isinstance(output, np.ndarray) or not np.issubdtype(output.dtype, np.floating):
            return None
        return output

    def readback(self, output: NDArray[np.floating]) -> NDArray[np.float32]:
        return np.asarray(output, dtype=np.float32).ravel().copy()

    def close(self) -> None:
        if self._session is not None:
            self._session = None
            logger.info("Released session for %s", self._name)


class OnnxModelManager:
    """Resolves model assets and creates ONNX Runtime workers."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def resolve_model_path(self, asset: str) -> Path:
        """Return a local path for ``asset``, downloading Hub models if needed."""
        if not asset.startswith(HF_SCHEME):
            path = Path(asset)
            if not path.is_file():
                raise FileNotFoundError(f"Model file not found: {path}")
            return path

        cached = self._model_paths.get(asset)
        if cached is not None and cached.exists():
            return cached

        ref = parse_hub_reference(asset)
        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=ref.repo_id,
                filename=ref.filename,
                subfolder=ref.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[asset] = downloaded
        logger.info("Downloaded %s to %s", asset, downloaded)
        return downloaded

    def load_model(self, asset: str) -> ModelHandle:
        path = self.resolve_model_path(asset)
        return ModelHandle(name=path.stem, path=path)

    def create_worker(self, model: ModelHandle) -> OnnxWorker:
        """Create an InferenceSession for ``model`` on the configured device."""
        session = InferenceSession(
            str(model.path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        logger.info("Loaded session for %s (providers=%s)", model.name, session.get_providers())
        return OnnxWorker(session, model.name)

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
