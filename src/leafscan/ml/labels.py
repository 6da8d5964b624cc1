"""Label catalog: the ordered class list that defines the model's output index space."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from leafscan.errors import EmptyCatalogError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

LABEL_SEPARATOR = "___"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class Label:
    """A single predictable class, encoding a plant species and a health status."""

    raw: str
    species: str
    status: str

    @classmethod
    def parse(cls, raw: str) -> Label:
        """Parse a ``<species>___<status>`` line.

        Underscores inside each part become spaces. Lines without the separator
        get the ``unknown`` placeholder for both fields.
        """
        parts = raw.split(LABEL_SEPARATOR)
        if len(parts) < 2:
            return cls(raw=raw, species=UNKNOWN, status=UNKNOWN)
        return cls(
            raw=raw,
            species=parts[0].replace("_", " "),
            status=parts[1].replace("_", " "),
        )

    @property
    def display_name(self) -> str:
        return f"{self.species} ({self.status})"


class LabelCatalog:
    """Immutable, index-addressable sequence of labels."""

    def __init__(self, labels: tuple[Label, ...]) -> None:
        if not labels:
            raise EmptyCatalogError("Label catalog must contain at least one label")
        self._labels = labels

    @classmethod
    def load(cls, raw_text: str) -> LabelCatalog:
        """Parse newline-delimited label text, skipping blank lines.

        Raises:
            EmptyCatalogError: If no label survives filtering.
        """
        lines = (line.strip() for line in raw_text.split("\n"))
        labels = tuple(Label.parse(line) for line in lines if line)
        if not labels:
            raise EmptyCatalogError("Label resource is empty")

        unknown = sum(1 for label in labels if label.species == UNKNOWN)
        if unknown:
            logger.warning("%s of %s labels have no '%s' separator", unknown, len(labels), LABEL_SEPARATOR)
        return cls(labels)

    @classmethod
    def from_bytes(cls, data: bytes, encoding: str = "utf-8") -> LabelCatalog:
        """Decode a label resource and parse it. A UTF-8 BOM is ignored."""
        if encoding.lower().replace("-", "") == "utf8":
            encoding = "utf-8-sig"
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError as exc:
            raise EmptyCatalogError(f"Label resource is not valid {encoding}: {exc}") from exc
        return cls.load(text)

    @property
    def labels(self) -> tuple[Label, ...]:
        return self._labels

    def get(self, index: int) -> Label | None:
        """Return the label at ``index``, or None when out of range."""
        if 0 <= index < len(self._labels):
            return self._labels[index]
        return None

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[Label]:
        return iter(self._labels)
