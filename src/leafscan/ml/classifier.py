"""Classifier boundary: the port the pipeline calls and its ONNX Runtime implementation."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

logger = logging.getLogger(__name__)


class ClassifierPort(Protocol):
    """Protocol for fixed-shape image classifiers.

    Implementations must be reentrant or serialize access themselves; the
    pipeline calls ``run`` from whatever thread invokes it.
    """

    def run(self, tensor: NDArray[np.float32]) -> Sequence[float] | NDArray[np.floating]:
        """Classify a preprocessed image.

        Args:
            tensor: (1, H, W, 3) float32 array with values in [-1, 1].

        Returns:
            One probability per label, in label order.
        """
        ...


class OnnxClassifier:
    """Runs an ONNX classification model through an InferenceSession."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._lock = threading.Lock()

        model_input = session.get_inputs()[0]
        model_output = session.get_outputs()[0]
        self._input_name: str = model_input.name
        self._output_name: str = model_output.name
        logger.info(
            "Classifier input %s%s, output %s%s",
            model_input.name,
            model_input.shape,
            model_output.name,
            model_output.shape,
        )

    @property
    def input_name(self) -> str:
        return self._input_name

    def run(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the session and return its first output as-is; the pipeline validates the shape."""
        with self._lock:
            outputs = self._session.run([self._output_name], {self._input_name: tensor})
        result: NDArray[np.float32] = np.asarray(outputs[0], dtype=np.float32)
        return result
