"""Exception hierarchy for label loading and the inference pipeline."""

from __future__ import annotations


class LeafScanError(Exception):
    """Base class for all LeafScan errors."""


class LabelLoadError(LeafScanError):
    """The label resource could not be turned into a catalog."""


class EmptyCatalogError(LabelLoadError):
    """The label resource is empty or holds no parsable label."""


class PipelineError(LeafScanError):
    """An inference call failed before a diagnosis could be produced."""


class PreprocessError(PipelineError):
    """The input image could not be turned into a model tensor."""


class DecodeError(PreprocessError):
    """The image bytes are not a recognized encoding or contain no pixels."""


class ShapeMismatchError(PipelineError):
    """The classifier output length does not match the label count."""

    def __init__(self, expected: int, actual: tuple[int, ...]) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Classifier returned shape {actual}, expected {expected} probabilities")


class ClassifierError(PipelineError):
    """The classifier raised while running inference."""
