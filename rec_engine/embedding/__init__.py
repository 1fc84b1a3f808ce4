"""
Item embeddings: the read-only EmbeddingTable and the default Item2Vec trainer.
"""

from .table import EmbeddingTable
from .item2vec import Item2VecTrainer, SkipGramModel, negative_sampling_loss

__all__ = [
    "EmbeddingTable",
    "Item2VecTrainer",
    "SkipGramModel",
    "negative_sampling_loss",
]
