"""Tests for the end-to-end inference pipeline and the ONNX classifier adapter."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from leafscan.errors import ClassifierError, DecodeError, PipelineError, ShapeMismatchError
from leafscan.ml.classifier import OnnxClassifier
from leafscan.ml.labels import LabelCatalog
from leafscan.ml.pipeline import InferencePipeline
from leafscan.ml.ranking import Accepted, IndexOutOfRange, LowConfidence, RankedPrediction

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FixedClassifier:
    """Returns the same probabilities for every call and records its inputs."""

    def __init__(self, probabilities: Sequence[float] | NDArray[np.floating]) -> None:
        self._probabilities = probabilities
        self.calls: list[NDArray[np.float32]] = []

    def run(self, tensor: NDArray[np.float32]) -> Sequence[float] | NDArray[np.floating]:
        self.calls.append(tensor)
        return self._probabilities


class _FailingClassifier:
    def run(self, tensor: NDArray[np.float32]) -> list[float]:
        raise RuntimeError("interpreter exploded")


def _image_bytes(color: tuple[int, int, int] = (40, 160, 60)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (300, 200), color).save(buffer, format="PNG")
    return buffer.getvalue()


def _catalog(*raw: str) -> LabelCatalog:
    return LabelCatalog.load("\n".join(raw))


@pytest.fixture()
def apple_catalog() -> LabelCatalog:
    return _catalog("Apple___healthy", "Apple___rust")


# ---------------------------------------------------------------------------
# Pipeline scenarios
# ---------------------------------------------------------------------------


class TestClassify:
    def test_accepted(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.15, 0.85]), threshold=0.7)
        diagnosis = pipeline.classify(_image_bytes())
        assert diagnosis == Accepted(species="Apple", status="rust", confidence=0.85, index=1)

    def test_tie_below_threshold_is_low_confidence(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.5, 0.5]), threshold=0.7)
        assert pipeline.classify(_image_bytes()) == LowConfidence(best_confidence=0.5)

    def test_tie_above_threshold_picks_first_index(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.5, 0.5]), threshold=0.5)
        diagnosis = pipeline.classify(_image_bytes())
        assert isinstance(diagnosis, Accepted)
        assert diagnosis.status == "healthy"

    def test_threshold_override(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.15, 0.85]), threshold=0.7)
        assert pipeline.classify(_image_bytes(), threshold=0.9) == LowConfidence(best_confidence=0.85)

    def test_default_threshold(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.3, 0.7]))
        assert pipeline.threshold == 0.7
        assert isinstance(pipeline.classify(_image_bytes()), Accepted)

    def test_classifier_receives_model_tensor(self, apple_catalog: LabelCatalog) -> None:
        classifier = _FixedClassifier([0.15, 0.85])
        InferencePipeline(apple_catalog, classifier).classify(_image_bytes((255, 255, 255)))
        assert len(classifier.calls) == 1
        tensor = classifier.calls[0]
        assert tensor.shape == (1, 160, 160, 3)
        assert tensor.dtype == np.float32
        assert np.all(tensor == 1.0)

    def test_batch_of_one_output_is_flattened(self, apple_catalog: LabelCatalog) -> None:
        classifier = _FixedClassifier(np.array([[0.15, 0.85]], dtype=np.float32))
        diagnosis = InferencePipeline(apple_catalog, classifier).classify(_image_bytes())
        assert isinstance(diagnosis, Accepted)
        assert diagnosis.confidence == pytest.approx(0.85)

    def test_probabilities_need_not_sum_to_one(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.9, 0.8]))
        diagnosis = pipeline.classify(_image_bytes())
        assert isinstance(diagnosis, Accepted)
        assert diagnosis.index == 0

    def test_unlabelled_best_class_passes_through(self) -> None:
        catalog = _catalog("Apple___healthy", "background")
        diagnosis = InferencePipeline(catalog, _FixedClassifier([0.1, 0.9])).classify(_image_bytes())
        assert diagnosis == Accepted(species="unknown", status="unknown", confidence=0.9, index=1)


class TestRun:
    def test_predictions_are_top_n_with_labels(self) -> None:
        catalog = _catalog(*(f"Plant{i}___state_{i}" for i in range(8)))
        probabilities = [0.01, 0.3, 0.02, 0.5, 0.04, 0.05, 0.03, 0.05]
        pipeline = InferencePipeline(catalog, _FixedClassifier(probabilities), top_n=5)

        result = pipeline.run(_image_bytes())

        assert [p.index for p in result.predictions] == [3, 1, 5, 7, 4]
        assert result.predictions[0].label is not None
        assert result.predictions[0].label.species == "Plant3"
        assert result.predictions[0].label.status == "state 3"
        assert result.diagnosis == LowConfidence(best_confidence=0.5)

    def test_fewer_labels_than_top_n(self, apple_catalog: LabelCatalog) -> None:
        result = InferencePipeline(apple_catalog, _FixedClassifier([0.15, 0.85])).run(_image_bytes())
        assert len(result.predictions) == 2


class TestFailures:
    def test_shape_mismatch_stops_before_ranking(self) -> None:
        catalog = _catalog("Apple___healthy", "Apple___rust", "Apple___scab")
        pipeline = InferencePipeline(catalog, _FixedClassifier([0.2, 0.8]))

        with patch("leafscan.ml.pipeline.rank") as mock_rank:
            with pytest.raises(ShapeMismatchError) as excinfo:
                pipeline.classify(_image_bytes())
            mock_rank.assert_not_called()

        assert excinfo.value.expected == 3
        assert excinfo.value.actual == (2,)

    def test_longer_output_is_shape_mismatch(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.2, 0.3, 0.5]))
        with pytest.raises(ShapeMismatchError):
            pipeline.classify(_image_bytes())

    def test_multi_row_output_is_shape_mismatch(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier(np.zeros((2, 2))))
        with pytest.raises(ShapeMismatchError):
            pipeline.classify(_image_bytes())

    def test_classifier_exception_is_wrapped(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FailingClassifier())
        with pytest.raises(ClassifierError, match="interpreter exploded") as excinfo:
            pipeline.classify(_image_bytes())
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_non_numeric_output_is_classifier_error(self, apple_catalog: LabelCatalog) -> None:
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier(["a", "b"]))  # type: ignore[arg-type]
        with pytest.raises(ClassifierError):
            pipeline.classify(_image_bytes())

    def test_decode_error_skips_classifier(self, apple_catalog: LabelCatalog) -> None:
        classifier = _FixedClassifier([0.15, 0.85])
        pipeline = InferencePipeline(apple_catalog, classifier)
        with pytest.raises(DecodeError):
            pipeline.classify(b"garbage")
        assert classifier.calls == []

    def test_all_failures_share_pipeline_error(self, apple_catalog: LabelCatalog) -> None:
        for classifier, data in (
            (_FixedClassifier([0.1]), _image_bytes()),
            (_FailingClassifier(), _image_bytes()),
            (_FixedClassifier([0.1, 0.9]), b""),
        ):
            with pytest.raises(PipelineError):
                InferencePipeline(apple_catalog, classifier).classify(data)


class TestOutOfRange:
    def test_index_out_of_range_from_decide(self, apple_catalog: LabelCatalog) -> None:
        # a model whose output grew beyond the catalog is caught as a shape mismatch first,
        # so drive decide through a patched ranking instead
        pipeline = InferencePipeline(apple_catalog, _FixedClassifier([0.1, 0.9]))
        with patch("leafscan.ml.pipeline.rank", return_value=[RankedPrediction(5, 0.99)]):
            diagnosis = pipeline.classify(_image_bytes())
        assert diagnosis == IndexOutOfRange(index=5, confidence=0.99)


# ---------------------------------------------------------------------------
# OnnxClassifier
# ---------------------------------------------------------------------------


def _mock_session(output: NDArray[np.float32]) -> MagicMock:
    session = MagicMock()
    model_input = MagicMock()
    model_input.name = "input_1"
    model_input.shape = [1, 160, 160, 3]
    model_output = MagicMock()
    model_output.name = "probabilities"
    model_output.shape = [1, 2]
    session.get_inputs.return_value = [model_input]
    session.get_outputs.return_value = [model_output]
    session.run.return_value = [output]
    return session


class TestOnnxClassifier:
    def test_runs_session_with_resolved_names(self) -> None:
        session = _mock_session(np.array([[0.25, 0.75]], dtype=np.float32))
        classifier = OnnxClassifier(session)
        tensor = np.zeros((1, 160, 160, 3), dtype=np.float32)

        result = classifier.run(tensor)

        session.run.assert_called_once_with(["probabilities"], {"input_1": tensor})
        assert classifier.input_name == "input_1"
        assert result.shape == (1, 2)
        assert result[0, 1] == pytest.approx(0.75)

    def test_one_dimensional_output_is_returned_as_is(self) -> None:
        session = _mock_session(np.array([0.6, 0.4], dtype=np.float32))
        result = OnnxClassifier(session).run(np.zeros((1, 160, 160, 3), dtype=np.float32))
        assert result.shape == (2,)

    def test_plugs_into_pipeline(self, apple_catalog: LabelCatalog) -> None:
        session = _mock_session(np.array([[0.1, 0.9]], dtype=np.float32))
        diagnosis = InferencePipeline(apple_catalog, OnnxClassifier(session)).classify(_image_bytes())
        assert isinstance(diagnosis, Accepted)
        assert diagnosis.status == "rust"

    def test_multi_row_output_keeps_its_shape(self) -> None:
        session = _mock_session(np.array([[0.1, 0.9], [0.9, 0.1]], dtype=np.float32))
        result = OnnxClassifier(session).run(np.zeros((1, 160, 160, 3), dtype=np.float32))
        assert result.shape == (2, 2)

    def test_multi_row_output_is_shape_mismatch_in_pipeline(self, apple_catalog: LabelCatalog) -> None:
        session = _mock_session(np.array([[0.1, 0.9], [0.9, 0.1]], dtype=np.float32))
        pipeline = InferencePipeline(apple_catalog, OnnxClassifier(session))

        with pytest.raises(ShapeMismatchError) as excinfo:
            pipeline.classify(_image_bytes())

        assert excinfo.value.expected == 2
        assert excinfo.value.actual == (2, 2)
