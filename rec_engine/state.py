"""
Pipeline state shared by training and serving.

Owns the two feature caches and the published embedding table. Create one per
process (or per long-lived server) and pass it explicitly to train(); the
resulting Predictor keeps a reference so rank() reuses the warm caches.
"""

import logging
import threading
from typing import Any, Dict, Optional

from .config import EngineConfig
from .embedding.table import EmbeddingTable
from .feature_store.cache import FeatureCache

logger = logging.getLogger(__name__)


class PipelineState:
    """
    Caches + embedding table for one engine instance.

    Example:
        >>> state = PipelineState(EngineConfig(user_cache_capacity=1000))
        >>> predictor = train(ctx, source, model, state=state)
        >>> state.user_cache.get_stats().hit_rate
        0.93
        >>> state.reset()  # start the next training run cold
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.user_cache = FeatureCache(
            capacity=self.config.user_cache_capacity,
            items_to_prune=self.config.items_to_prune(self.config.user_cache_capacity),
            name="user",
            poll_interval=self.config.poll_interval_seconds,
        )
        self.item_cache = FeatureCache(
            capacity=self.config.item_cache_capacity,
            items_to_prune=self.config.items_to_prune(self.config.item_cache_capacity),
            name="item",
            poll_interval=self.config.poll_interval_seconds,
        )
        self._embedding_table = EmbeddingTable.empty()
        self._lock = threading.Lock()

    @property
    def embedding_table(self) -> EmbeddingTable:
        with self._lock:
            return self._embedding_table

    def publish_embeddings(self, table: EmbeddingTable) -> None:
        """
        Replace the embedding table used by subsequent compositions.

        Raises:
            ValueError: If a non-empty table's width differs from embedding_dim
        """
        if len(table) and table.dim != self.config.embedding_dim:
            raise ValueError(
                f"Embedding table width {table.dim} != configured embedding_dim "
                f"{self.config.embedding_dim}"
            )
        with self._lock:
            self._embedding_table = table
        logger.info(f"Published embedding table: {table}")

    def reset(self) -> None:
        """Clear both caches and drop the embedding table."""
        self.user_cache.clear()
        self.item_cache.clear()
        with self._lock:
            self._embedding_table = EmbeddingTable.empty()
        logger.info("Pipeline state reset")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "user_cache": self.user_cache.get_stats().to_dict(),
            "item_cache": self.item_cache.get_stats().to_dict(),
            "embedding_items": len(self.embedding_table),
        }
