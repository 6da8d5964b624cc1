"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from leafscan.config import Settings
    from leafscan.ml.classifier import ClassifierPort
    from leafscan.ml.labels import LabelCatalog

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leafscan.api.routes import router
from leafscan.config import get_settings
from leafscan.ml.inference import InferencePool
from leafscan.ml.model_manager import OnnxModelManager, load_label_catalog
from leafscan.ml.pipeline import InferencePipeline
from leafscan.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


def build_pipeline(settings: Settings, catalog: LabelCatalog, classifier: ClassifierPort) -> InferencePipeline:
    """Wire the pipeline constants from settings around a catalog and classifier."""
    preprocessor = ImagePreprocessor(
        input_size=settings.input_size,
        resample=settings.resample,
        max_image_pixels=settings.max_image_pixels,
    )
    return InferencePipeline(
        catalog=catalog,
        classifier=classifier,
        preprocessor=preprocessor,
        threshold=settings.confidence_threshold,
        top_n=settings.top_n,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting LeafScan (device=%s, max_concurrent=%s, input=%sx%s, threshold=%.2f)",
        settings.device,
        settings.max_concurrent,
        settings.input_size,
        settings.input_size,
        settings.confidence_threshold,
    )

    catalog = load_label_catalog(settings.labels_path)
    model_manager = OnnxModelManager(settings)
    app.state.model_manager = model_manager
    app.state.pipeline = build_pipeline(settings, catalog, model_manager.get_classifier())

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("LeafScan ready")
    yield

    logger.info("Shutting down LeafScan")
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("LeafScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="LeafScan",
        description="Plant leaf species and health classification API",
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


def main() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("leafscan.main:app", host=settings.host, port=settings.port)
