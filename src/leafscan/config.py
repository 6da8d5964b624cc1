"""Environment-based configuration for LeafScan."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from LEAFSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEAFSCAN_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model acquisition: a bundled file wins over the Hub download
    model_path: str | None = None
    model_repo_id: str = "leafscan/plant-village-classifier"
    model_filename: str = "plant_village_mobilenet_v2.onnx"
    models_dir: str = "models"
    labels_path: str = "assets/labels.txt"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Pipeline
    input_size: int = Field(default=160, ge=1)
    channels: Literal[3] = 3
    resample: Literal["nearest", "bilinear", "bicubic", "lanczos"] = "nearest"
    confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    top_n: int = Field(default=5, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
