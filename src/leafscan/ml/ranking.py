"""Ranking of classifier probabilities and the accept/reject decision.

Selection of the best class keeps the lowest index among equal top
probabilities: ``rank`` uses a stable sort over index order, so earlier
indices precede later ones with the same probability.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from leafscan.ml.labels import LabelCatalog

DEFAULT_CONFIDENCE_THRESHOLD: float = 0.70
DEFAULT_TOP_N: int = 5


class RankedPrediction(NamedTuple):
    index: int
    probability: float


class DiagnosisKind(StrEnum):
    ACCEPTED = "accepted"
    LOW_CONFIDENCE = "low_confidence"
    NO_PREDICTION = "no_prediction"
    INDEX_OUT_OF_RANGE = "index_out_of_range"


@dataclass(frozen=True)
class Accepted:
    """The top prediction cleared the threshold and maps to a known label."""

    kind: ClassVar[DiagnosisKind] = DiagnosisKind.ACCEPTED

    species: str
    status: str
    confidence: float
    index: int


@dataclass(frozen=True)
class LowConfidence:
    """The top prediction fell below the threshold (not a plant, or not sure)."""

    kind: ClassVar[DiagnosisKind] = DiagnosisKind.LOW_CONFIDENCE

    best_confidence: float


@dataclass(frozen=True)
class NoPrediction:
    """The ranking was empty."""

    kind: ClassVar[DiagnosisKind] = DiagnosisKind.NO_PREDICTION


@dataclass(frozen=True)
class IndexOutOfRange:
    """The top prediction has no label; the catalog and model disagree."""

    kind: ClassVar[DiagnosisKind] = DiagnosisKind.INDEX_OUT_OF_RANGE

    index: int
    confidence: float


Diagnosis = Accepted | LowConfidence | NoPrediction | IndexOutOfRange


def _sort_key(prediction: RankedPrediction) -> float:
    # NaN compares false against everything; push it to the end
    if math.isnan(prediction.probability):
        return math.inf
    return -prediction.probability


def rank(probabilities: Iterable[float]) -> list[RankedPrediction]:
    """Order every (index, probability) pair by probability, highest first.

    Equal probabilities keep ascending index order.
    """
    indexed = [RankedPrediction(index, float(p)) for index, p in enumerate(probabilities)]
    return sorted(indexed, key=_sort_key)


def top_n(ranking: Sequence[RankedPrediction], n: int = DEFAULT_TOP_N) -> list[RankedPrediction]:
    return list(ranking[: max(n, 0)])


def decide(
    ranking: Sequence[RankedPrediction],
    catalog: LabelCatalog,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> Diagnosis:
    """Turn a ranking into a diagnosis.

    The confidence gate is applied before the label lookup, so a low-confidence
    out-of-range index is reported as ``LowConfidence``. The threshold is
    inclusive.
    """
    if not ranking:
        return NoPrediction()

    best_index, best_probability = ranking[0]
    if not best_probability >= threshold:
        return LowConfidence(best_confidence=best_probability)

    label = catalog.get(best_index)
    if label is None:
        return IndexOutOfRange(index=best_index, confidence=best_probability)

    return Accepted(
        species=label.species,
        status=label.status,
        confidence=best_probability,
        index=best_index,
    )
