"""
Item2Vec: skip-gram item embeddings trained from behavior sequences.

This is the default EmbeddingTrainer. Items that co-occur within `window`
positions of each other in a user's sequence are pulled together; randomly
drawn items (negatives) are pushed apart.

How it works:
- Every (center, context) pair within the window is a positive example
- For each positive, draw `negatives` items from the unigram^0.75 noise
  distribution
- Loss: -log σ(c·p) - Σ log σ(-c·n)

The center embedding matrix becomes the EmbeddingTable.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F
from tqdm import tqdm

from rec_engine.config import Item2VecConfig
from rec_engine.feature_store.interface import EmbeddingTrainer

from .table import EmbeddingTable

logger = logging.getLogger(__name__)


class SkipGramModel(nn.Module):
    """
    Two embedding tables: one for items as centers, one for items as context.

    Example:
        model = SkipGramModel(num_items=1000, embedding_dim=16)
        loss = negative_sampling_loss(*model(centers, contexts, negatives))
    """

    def __init__(self, num_items: int, embedding_dim: int, init_std: float = 0.1):
        super().__init__()
        self.center = nn.Embedding(num_items, embedding_dim)
        self.context = nn.Embedding(num_items, embedding_dim)

        nn.init.normal_(self.center.weight, mean=0, std=init_std)
        nn.init.normal_(self.context.weight, mean=0, std=init_std)

    def forward(
        self,
        centers: torch.Tensor,
        contexts: torch.Tensor,
        negatives: torch.Tensor,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Args:
            centers: [batch_size]
            contexts: [batch_size]
            negatives: [batch_size, num_negatives]

        Returns:
            (positive scores [batch_size], negative scores [batch_size, num_negatives])
        """
        c = self.center(centers)
        pos = self.context(contexts)
        neg = self.context(negatives)

        pos_scores = (c * pos).sum(dim=-1)
        neg_scores = torch.bmm(neg, c.unsqueeze(2)).squeeze(2)
        return pos_scores, neg_scores


def negative_sampling_loss(pos_scores: torch.Tensor, neg_scores: torch.Tensor) -> torch.Tensor:
    """Skip-gram negative sampling loss, averaged over the batch."""
    return -(F.logsigmoid(pos_scores) + F.logsigmoid(-neg_scores).sum(dim=1)).mean()


def build_vocab(sequences: List[List[str]], min_count: int) -> Tuple[Dict[str, int], np.ndarray]:
    """
    Map items seen at least min_count times to contiguous indices.

    Returns:
        (item -> index, per-index occurrence counts)
    """
    counts = Counter(item for seq in sequences for item in seq)
    items = sorted(item for item, n in counts.items() if n >= min_count)
    vocab = {item: i for i, item in enumerate(items)}
    freqs = np.array([counts[item] for item in items], dtype=np.float64)
    return vocab, freqs


def build_pairs(
    sequences: List[List[str]],
    vocab: Dict[str, int],
    window: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """All (center, context) index pairs within `window` positions."""
    centers: List[int] = []
    contexts: List[int] = []
    for seq in sequences:
        indices = [vocab[item] for item in seq if item in vocab]
        for i, center in enumerate(indices):
            lo = max(0, i - window)
            hi = min(len(indices), i + window + 1)
            for j in range(lo, hi):
                if j != i:
                    centers.append(center)
                    contexts.append(indices[j])
    return np.array(centers, dtype=np.int64), np.array(contexts, dtype=np.int64)


class Item2VecTrainer(EmbeddingTrainer):
    """
    Trains an EmbeddingTable from space-separated item id sequences.

    Example:
        trainer = Item2VecTrainer(Item2VecConfig(embedding_dim=16, window=5))
        table = trainer.train(["1 2 3 4", "2 3 5"])
        table.get(3)  # 16-dim vector
    """

    def __init__(self, config: Optional[Item2VecConfig] = None, show_progress: bool = False):
        self.config = config or Item2VecConfig()
        self.show_progress = show_progress
        self.loss_history: List[float] = []

    def train(self, sequences: Iterable[str]) -> EmbeddingTable:
        config = self.config
        tokenized = [seq.split() for seq in sequences]
        tokenized = [seq for seq in tokenized if seq]

        vocab, freqs = build_vocab(tokenized, config.min_count)
        if not vocab:
            logger.warning("No items in sequence corpus, returning empty embedding table")
            return EmbeddingTable.empty()

        centers, contexts = build_pairs(tokenized, vocab, config.window)
        logger.info(
            f"Training item2vec: {len(tokenized)} sequences, {len(vocab)} items, "
            f"{len(centers)} pairs, dim={config.embedding_dim}"
        )

        torch.manual_seed(config.seed)
        rng = np.random.default_rng(config.seed)

        model = SkipGramModel(len(vocab), config.embedding_dim)
        optimizer = torch.optim.Adam(model.parameters(), lr=config.learning_rate)
        noise = torch.tensor(freqs ** 0.75, dtype=torch.float)
        noise = noise / noise.sum()

        self.loss_history = []
        if len(centers) == 0:
            logger.warning("No co-occurring item pairs, embeddings keep their initial values")
        else:
            centers_t = torch.from_numpy(centers)
            contexts_t = torch.from_numpy(contexts)

            model.train()
            for epoch in tqdm(
                range(config.num_epochs), desc="item2vec", disable=not self.show_progress
            ):
                perm = torch.from_numpy(rng.permutation(len(centers)))
                epoch_loss = 0.0
                num_batches = 0
                for start in range(0, len(perm), config.batch_size):
                    idx = perm[start:start + config.batch_size]
                    negatives = torch.multinomial(
                        noise, len(idx) * config.negatives, replacement=True
                    ).view(len(idx), config.negatives)

                    optimizer.zero_grad()
                    loss = negative_sampling_loss(*model(centers_t[idx], contexts_t[idx], negatives))
                    loss.backward()
                    optimizer.step()

                    epoch_loss += loss.item()
                    num_batches += 1

                avg_loss = epoch_loss / num_batches
                self.loss_history.append(avg_loss)
                logger.info(f"item2vec epoch {epoch + 1}/{config.num_epochs}: loss={avg_loss:.4f}")

        weights = model.center.weight.detach().cpu().numpy()
        return EmbeddingTable(
            {item: weights[i] for item, i in vocab.items()},
            dim=config.embedding_dim,
        )
