"""API route definitions."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from leafscan.api.deps import get_inference_pool, get_model_manager, get_pipeline, get_settings
from leafscan.api.middleware import verify_api_key
from leafscan.api.schemas import (
    ClassifyResponse,
    ErrorResponse,
    HealthResponse,
    LabelInfo,
    LabelsResponse,
)
from leafscan.errors import ClassifierError, PreprocessError, ShapeMismatchError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@router.post(
    "/classify",
    response_model=ClassifyResponse,
    responses={
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Diagnose a plant leaf photo",
)
async def classify(
    request: Request,
    file: UploadFile,
    threshold: Annotated[float | None, Query(ge=0.0, le=1.0)] = None,
) -> ClassifyResponse | JSONResponse:
    """Classify an uploaded leaf image into species and health status."""
    settings = get_settings(request)
    pipeline = get_pipeline(request)
    pool = get_inference_pool(request)

    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, f"File exceeds {settings.max_file_size} bytes")

    try:
        result = await pool.classify(pipeline, data, threshold)
    except PreprocessError as exc:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))
    except (ShapeMismatchError, ClassifierError) as exc:
        logger.error("Classification of %s failed: %s", file.filename, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Inference queue is full, retry later")

    return ClassifyResponse.from_result(result)


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="List the classes the model can predict",
)
async def list_labels(request: Request) -> LabelsResponse:
    """Return the label catalog in model output order."""
    catalog = get_pipeline(request).catalog
    return LabelsResponse(
        labels=[
            LabelInfo(index=index, raw=label.raw, species=label.species, status=label.status)
            for index, label in enumerate(catalog)
        ]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings(request)
    stats = get_inference_pool(request).stats()
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=get_model_manager(request).get_loaded_models(),
        label_count=len(get_pipeline(request).catalog),
        concurrent_requests=stats.active,
        queue_depth=stats.queued,
        classified_total=stats.completed,
        failed_total=stats.failed,
        rejected_total=stats.rejected,
        last_latency_ms=stats.last_latency_ms,
    )
