# src/cadgis/sources/base.py
"""
Common interface of feature sources.

A source fetches a whole batch before anything is drawn. The batch carries
the features plus what the renderer needs to know about them: the CRS of the
coordinates and the layer-level geometry kind.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from cadgis.core.feature import FeatureRecord
from cadgis.core.geometry import GeometryKind, infer_kind


@dataclass
class FeatureBatch(Sequence):
    """Fully materialised result of one fetch."""

    layer_name: str
    features: List[FeatureRecord] = field(default_factory=list)
    source_epsg: int = 0
    declared_type: Optional[str] = None

    def __len__(self) -> int:
        return len(self.features)

    def __getitem__(self, index):
        return self.features[index]

    def __iter__(self) -> Iterator[FeatureRecord]:
        return iter(self.features)

    @property
    def kind(self) -> GeometryKind:
        """Decided once for the whole batch: declared type, else first geometry."""
        return infer_kind(self.declared_type, (f.geometry for f in self.features))

    def attribute_keys(self) -> List[str]:
        """Keys in first-seen order across all features."""
        keys = {}
        for feature in self.features:
            for key in feature.attributes:
                keys.setdefault(key, None)
        return list(keys)

    def summary(self) -> str:
        return (
            f"{self.layer_name}: {len(self)} features, kind={self.kind.value}, "
            f"EPSG:{self.source_epsg or 'default'}"
        )


class FeatureSource(ABC):
    """Producer of feature batches."""

    @abstractmethod
    def fetch(self, *args, **kwargs) -> FeatureBatch:
        """
        Fetch one batch.

        Zero rows give an empty batch. Unreachable sources raise
        SourceConnectionError, rejected queries QueryError.
        """
