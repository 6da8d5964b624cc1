"""Inference pipeline: image bytes -> tensor -> probabilities -> ranking -> diagnosis."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from leafscan.errors import ClassifierError, ShapeMismatchError
from leafscan.ml.preprocessing import ImagePreprocessor
from leafscan.ml.ranking import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_TOP_N,
    RankedPrediction,
    decide,
    rank,
    top_n,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from leafscan.ml.classifier import ClassifierPort
    from leafscan.ml.labels import Label, LabelCatalog
    from leafscan.ml.ranking import Diagnosis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabeledPrediction:
    """A ranked prediction resolved against the catalog (label is None when out of range)."""

    index: int
    probability: float
    label: Label | None


@dataclass(frozen=True)
class PipelineResult:
    diagnosis: Diagnosis
    predictions: tuple[LabeledPrediction, ...]


class InferencePipeline:
    """Runs one classification per call. Holds no per-call state."""

    def __init__(
        self,
        catalog: LabelCatalog,
        classifier: ClassifierPort,
        preprocessor: ImagePreprocessor | None = None,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        top_n: int = DEFAULT_TOP_N,
    ) -> None:
        self._catalog = catalog
        self._classifier = classifier
        self._preprocessor = preprocessor or ImagePreprocessor()
        self._threshold = threshold
        self._top_n = top_n

    @property
    def catalog(self) -> LabelCatalog:
        return self._catalog

    @property
    def threshold(self) -> float:
        return self._threshold

    def classify(self, image_bytes: bytes, threshold: float | None = None) -> Diagnosis:
        """Classify an encoded image and return only the diagnosis.

        Raises:
            DecodeError: If the image cannot be decoded.
            ClassifierError: If the classifier fails.
            ShapeMismatchError: If the classifier output does not match the catalog.
        """
        return self.run(image_bytes, threshold).diagnosis

    def run(self, image_bytes: bytes, threshold: float | None = None) -> PipelineResult:
        """Classify an encoded image and return the diagnosis with the top-N ranking."""
        tensor = self._preprocessor.preprocess(image_bytes)
        probabilities = self._infer(tensor)

        ranking = rank(probabilities)
        effective_threshold = self._threshold if threshold is None else threshold
        diagnosis = decide(ranking, self._catalog, effective_threshold)

        predictions = tuple(self._resolve(p) for p in top_n(ranking, self._top_n))
        self._log_predictions(predictions)
        logger.info("Diagnosis: %s", diagnosis)
        return PipelineResult(diagnosis=diagnosis, predictions=predictions)

    def _infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float64]:
        try:
            raw = self._classifier.run(tensor)
        except Exception as exc:
            logger.warning("Classifier failed: %s", exc)
            raise ClassifierError(f"Classifier failed: {exc}") from exc

        try:
            probabilities = np.asarray(raw, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise ClassifierError(f"Classifier returned a non-numeric output: {exc}") from exc

        if probabilities.ndim == 2 and probabilities.shape[0] == 1:
            probabilities = probabilities[0]
        if probabilities.ndim != 1 or probabilities.shape[0] != len(self._catalog):
            raise ShapeMismatchError(expected=len(self._catalog), actual=tuple(probabilities.shape))
        return probabilities

    def _resolve(self, prediction: RankedPrediction) -> LabeledPrediction:
        return LabeledPrediction(
            index=prediction.index,
            probability=prediction.probability,
            label=self._catalog.get(prediction.index),
        )

    @staticmethod
    def _log_predictions(predictions: tuple[LabeledPrediction, ...]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        for position, prediction in enumerate(predictions, start=1):
            if prediction.label is None:
                logger.debug("%s. invalid index %s (%.2f%%)", position, prediction.index, prediction.probability * 100)
            else:
                logger.debug(
                    "%s. %s: %.2f%%", position, prediction.label.display_name, prediction.probability * 100
                )
