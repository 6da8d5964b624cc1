"""Pydantic request/response schemas for the LeafScan API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from leafscan.ml.pipeline import LabeledPrediction, PipelineResult
from leafscan.ml.ranking import (
    Accepted,
    Diagnosis,
    DiagnosisKind,
    IndexOutOfRange,
    LowConfidence,
)


class DiagnosisModel(BaseModel):
    """Outcome of a classification. ``kind`` tells which optional fields are set."""

    kind: DiagnosisKind
    species: str | None = None
    status: str | None = None
    confidence: float | None = Field(default=None, description="Top probability (0.0-1.0)")
    label_index: int | None = None

    @classmethod
    def from_diagnosis(cls, diagnosis: Diagnosis) -> DiagnosisModel:
        if isinstance(diagnosis, Accepted):
            return cls(
                kind=diagnosis.kind,
                species=diagnosis.species,
                status=diagnosis.status,
                confidence=diagnosis.confidence,
                label_index=diagnosis.index,
            )
        if isinstance(diagnosis, LowConfidence):
            return cls(kind=diagnosis.kind, confidence=diagnosis.best_confidence)
        if isinstance(diagnosis, IndexOutOfRange):
            return cls(kind=diagnosis.kind, confidence=diagnosis.confidence, label_index=diagnosis.index)
        return cls(kind=diagnosis.kind)


class Prediction(BaseModel):
    """A single ranked class with its probability."""

    index: int
    label: str | None
    species: str | None
    status: str | None
    confidence: float

    @classmethod
    def from_labeled(cls, prediction: LabeledPrediction) -> Prediction:
        label = prediction.label
        return cls(
            index=prediction.index,
            label=label.raw if label else None,
            species=label.species if label else None,
            status=label.status if label else None,
            confidence=prediction.probability,
        )


class ClassifyResponse(BaseModel):
    """Response for the classification endpoint."""

    diagnosis: DiagnosisModel
    predictions: list[Prediction] = Field(description="Top-N predictions, highest first")

    @classmethod
    def from_result(cls, result: PipelineResult) -> ClassifyResponse:
        return cls(
            diagnosis=DiagnosisModel.from_diagnosis(result.diagnosis),
            predictions=[Prediction.from_labeled(p) for p in result.predictions],
        )


class LabelInfo(BaseModel):
    index: int
    raw: str
    species: str
    status: str


class LabelsResponse(BaseModel):
    """Response for the label listing endpoint."""

    labels: list[LabelInfo]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    label_count: int
    concurrent_requests: int
    queue_depth: int
    classified_total: int
    failed_total: int
    rejected_total: int
    last_latency_ms: float | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
