"""Environment-based configuration for VisionLabel."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from VISIONLABEL_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VISIONLABEL_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model and labels. The asset is a local path or hf://<repo_id>/<filename>.
    model_asset: str | None = None
    labels_path: str | None = None
    models_dir: str = "models"

    # Classification
    target_label: str | None = None
    top_k: int = Field(default=5, ge=1)
    input_size: int = Field(default=224, ge=1)

    # Run once on startup with this image
    image_path: str | None = None
    classify_on_startup: bool = True

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    log_level: str = "INFO"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
