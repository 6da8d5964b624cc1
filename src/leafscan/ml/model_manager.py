"""Model manager: locate or download the classifier model, then load and cache its session.

The model comes either from a bundled file (``LEAFSCAN_MODEL_PATH``) or from a
HuggingFace Hub download into ``LEAFSCAN_MODELS_DIR``. Either way the result is a
single ONNX InferenceSession wrapped as an ``OnnxClassifier``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from leafscan.ml.classifier import OnnxClassifier
from leafscan.ml.labels import LabelCatalog

if TYPE_CHECKING:
    from leafscan.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def resolve_model_path(self) -> Path:
        """Return the local model file, downloading it if needed."""
        ...

    def get_session(self) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_classifier(self) -> OnnxClassifier:
        """Return a classifier backed by the cached session."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Drop the cached session."""
        ...


# ---------------------------------------------------------------------------
# Label asset
# ---------------------------------------------------------------------------


def load_label_catalog(path: str | Path) -> LabelCatalog:
    """Read the label list from disk and parse it.

    Raises:
        FileNotFoundError: If the file does not exist.
        EmptyCatalogError: If the file holds no labels.
    """
    label_path = Path(path)
    catalog = LabelCatalog.from_bytes(label_path.read_bytes())
    logger.info("Loaded %s labels from %s", len(catalog), label_path)
    return catalog


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves, loads, and caches the classifier's ONNX inference session."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._session: InferenceSession | None = None
        self._classifier: OnnxClassifier | None = None
        self._model_path: Path | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    @property
    def model_name(self) -> str:
        if self._model_path is not None:
            return self._model_path.stem
        if self._settings.model_path:
            return Path(self._settings.model_path).stem
        return Path(self._settings.model_filename).stem

    # -- Public API ---------------------------------------------------------

    def resolve_model_path(self) -> Path:
        """Return the bundled model if it exists, else download it from HuggingFace."""
        bundled = self._settings.model_path
        if bundled is not None:
            path = Path(bundled)
            if path.exists():
                self._model_path = path
                return path
            logger.warning("Bundled model %s not found, falling back to %s", path, self._settings.model_repo_id)

        if self._model_path is not None and self._model_path.exists():
            return self._model_path

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=self._settings.model_repo_id,
                filename=self._settings.model_filename,
                local_dir=str(self._models_dir),
            )
        )
        self._model_path = downloaded
        logger.info("Downloaded %s to %s", self._settings.model_filename, downloaded)
        return downloaded

    def get_session(self) -> InferenceSession:
        """Return the cached InferenceSession, creating it if needed."""
        with self._lock:
            if self._session is not None:
                return self._session

        model_path = self.resolve_model_path()
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            if self._session is not None:
                return self._session
            self._session = session
            logger.info("Loaded session for %s", self.model_name)
            return session

    def get_classifier(self) -> OnnxClassifier:
        """Return the classifier wrapping the cached session."""
        session = self.get_session()
        with self._lock:
            if self._classifier is None:
                self._classifier = OnnxClassifier(session)
            return self._classifier

    def get_loaded_models(self) -> list[str]:
        """Return the model name if its session is loaded."""
        with self._lock:
            return [self.model_name] if self._session is not None else []

    def shutdown(self) -> None:
        """Drop the cached session."""
        with self._lock:
            self._session = None
            self._classifier = None
            logger.info("Model session cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
