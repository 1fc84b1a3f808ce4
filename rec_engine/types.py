"""
Core data types: events, requests, layout ranges and training sets.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd

# One entity's feature vector (1-D float64 array)
FeatureTensor = np.ndarray

Range = Tuple[int, int]  # [start, end)


@dataclass(frozen=True)
class Event:
    """A single (user, item) interaction used as a training sample."""

    user_id: int
    item_id: int
    label: float
    timestamp: int = 0


@dataclass(frozen=True)
class ScoringRequest:
    """A (user, item) pair to score at serving time."""

    user_id: int
    item_id: int
    timestamp: int = 0


@dataclass
class ItemScore:
    """A scored item, as returned by rank()."""

    item_id: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"item_id": self.item_id, "score": self.score}


@dataclass(frozen=True)
class LayoutRanges:
    """
    Column layout of a composed vector.

    Four contiguous half-open ranges, in order: user profile, user behavior
    block, item embedding, item context. Together they partition [0, width).
    """

    user_profile: Range = (0, 0)
    user_behavior: Range = (0, 0)
    item_embedding: Range = (0, 0)
    context: Range = (0, 0)

    @classmethod
    def from_widths(
        cls,
        user_width: int,
        behavior_width: int,
        embedding_width: int,
        item_width: int,
    ) -> "LayoutRanges":
        """Lay the four segments out back to back starting at column 0."""
        user_end = user_width
        behavior_end = user_end + behavior_width
        embedding_end = behavior_end + embedding_width
        return cls(
            user_profile=(0, user_end),
            user_behavior=(user_end, behavior_end),
            item_embedding=(behavior_end, embedding_end),
            context=(embedding_end, embedding_end + item_width),
        )

    @property
    def width(self) -> int:
        return self.context[1]

    def segments(self) -> List[Tuple[str, Range]]:
        return [
            ("user_profile", self.user_profile),
            ("user_behavior", self.user_behavior),
            ("item_embedding", self.item_embedding),
            ("context", self.context),
        ]

    def column_names(self) -> List[str]:
        """Column names such as user_profile_0, user_behavior_3, context_1."""
        return [
            f"{name}_{i}"
            for name, (start, end) in self.segments()
            for i in range(end - start)
        ]

    def to_dict(self) -> Dict[str, List[int]]:
        return {name: [start, end] for name, (start, end) in self.segments()}


@dataclass(frozen=True)
class TrainingSample:
    vector: np.ndarray
    label: float


@dataclass
class TrainingSet:
    """
    Assembled samples plus the layout describing their columns.

    Owned by the caller once assembly completes.
    """

    samples: List[TrainingSample] = field(default_factory=list)
    layout: LayoutRanges = field(default_factory=LayoutRanges)

    def __len__(self) -> int:
        return len(self.samples)

    def features(self) -> np.ndarray:
        """N x width feature matrix."""
        if not self.samples:
            return np.zeros((0, self.layout.width), dtype=np.float64)
        return np.vstack([s.vector for s in self.samples])

    def labels(self) -> np.ndarray:
        return np.array([s.label for s in self.samples], dtype=np.float64)

    def column_names(self) -> List[str]:
        return self.layout.column_names()

    def to_frame(self) -> pd.DataFrame:
        """Feature matrix as a DataFrame with named columns plus a label column."""
        df = pd.DataFrame(self.features(), columns=self.column_names())
        df["label"] = self.labels()
        return df
