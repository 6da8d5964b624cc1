"""Accessors for objects the lifespan stores on ``app.state``."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import Request

    from leafscan.config import Settings
    from leafscan.ml.inference import InferencePool
    from leafscan.ml.model_manager import ModelManager
    from leafscan.ml.pipeline import InferencePipeline


def get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def get_pipeline(request: Request) -> InferencePipeline:
    pipeline: InferencePipeline = request.app.state.pipeline
    return pipeline
