"""
Read-only lookup from item id to its learned embedding.

The table is built once per training run (by an EmbeddingTrainer) and
published to the pipeline state before sample assembly starts. After that it
is shared by every worker without locking, so it must not be mutated.

An empty table is a valid state meaning "no embeddings configured": the
composer then zero-fills both embedding segments.
"""

import logging
from typing import Dict, Iterator, Mapping, Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)


class EmbeddingTable(Mapping):
    """
    Immutable mapping of item id (string key) -> fixed-width float vector.

    Example:
        >>> table = EmbeddingTable({"1": [0.1, 0.2], "2": [0.3, 0.4]})
        >>> table.dim
        2
        >>> table.get(1)
        array([0.1, 0.2])
        >>> table.get(999) is None
        True
    """

    def __init__(
        self,
        vectors: Optional[Mapping[str, Sequence[float]]] = None,
        dim: Optional[int] = None,
    ):
        """
        Args:
            vectors: Item id -> embedding. Keys are normalized to strings.
            dim: Expected width; inferred from the first vector if omitted

        Raises:
            ValueError: If vectors have inconsistent widths
        """
        self._vectors: Dict[str, np.ndarray] = {}
        self._dim = dim or 0

        for key, values in (vectors or {}).items():
            vec = np.asarray(values, dtype=np.float64).ravel()
            if self._dim == 0:
                self._dim = len(vec)
            if len(vec) != self._dim:
                raise ValueError(
                    f"Embedding for item {key} has width {len(vec)}, expected {self._dim}"
                )
            vec.setflags(write=False)
            self._vectors[str(key)] = vec

    @classmethod
    def empty(cls) -> "EmbeddingTable":
        return cls()

    @property
    def dim(self) -> int:
        return self._dim

    def get(self, item_id: Union[int, str], default=None) -> Optional[np.ndarray]:
        return self._vectors.get(str(item_id), default)

    def __getitem__(self, item_id: Union[int, str]) -> np.ndarray:
        return self._vectors[str(item_id)]

    def __contains__(self, item_id: object) -> bool:
        return str(item_id) in self._vectors

    def __iter__(self) -> Iterator[str]:
        return iter(self._vectors)

    def __len__(self) -> int:
        return len(self._vectors)

    def __repr__(self) -> str:
        return f"EmbeddingTable(items={len(self)}, dim={self.dim})"
