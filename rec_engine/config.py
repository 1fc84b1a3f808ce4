"""
Configuration dataclasses for the feature assembly and scoring engine.

This module defines the configuration used by the caches, the sample
assembly pipeline and the default collaborators (item embedding trainer,
XGBoost fitter). All configs follow the same pattern: a dataclass with
production defaults, validation in __post_init__, and to_dict() for logging.

Example YAML:
    embedding_dim: 16
    behavior_seq_len: 10
    concurrency: 16
    user_cache_capacity: 200000
    item_cache_capacity: 2000000
    default_item_feature: [0.0, 0.0, 0.0]
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


@dataclass
class EngineConfig:
    """
    Configuration for feature resolution, caching and sample assembly.

    Attributes:
        embedding_dim: Width of one item embedding
        embedding_window: Context window used when training item embeddings
        behavior_seq_len: Number of historical items in the behavior block
        concurrency: Number of sample assembly workers
        result_buffer_size: Capacity of the assembled-vector queue (backpressure)
        user_cache_capacity: Max entries in the user feature cache
        item_cache_capacity: Max entries in the item feature cache
        cache_prune_fraction: Fraction of capacity evicted per pruning pass
        feature_ttl_seconds: Time-to-live of cached feature tensors
        progress_every: Log assembly progress every N accepted samples
        poll_interval_seconds: How often blocking waits check for cancellation
        default_user_feature: Optional fallback tensor for unresolvable users
        default_item_feature: Optional fallback tensor for unresolvable items
        debug_user_id: Restrict debug tracing to this user (0 = any user)
        debug_item_id: Log features and score of this item (0 = disabled)
    """

    embedding_dim: int = 16
    embedding_window: int = 5
    behavior_seq_len: int = 10
    concurrency: int = 16
    result_buffer_size: int = 1000

    user_cache_capacity: int = 200_000
    item_cache_capacity: int = 2_000_000
    cache_prune_fraction: float = 0.01
    feature_ttl_seconds: float = 24 * 60 * 60

    progress_every: int = 1000
    poll_interval_seconds: float = 0.05

    default_user_feature: Optional[List[float]] = None
    default_item_feature: Optional[List[float]] = None

    debug_user_id: int = 0
    debug_item_id: int = 0

    def __post_init__(self):
        """Validate configuration."""
        positive = [
            "embedding_dim",
            "embedding_window",
            "behavior_seq_len",
            "concurrency",
            "result_buffer_size",
            "user_cache_capacity",
            "item_cache_capacity",
            "progress_every",
        ]
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        if not 0.0 < self.cache_prune_fraction <= 1.0:
            raise ValueError(
                f"cache_prune_fraction must be in (0, 1], got {self.cache_prune_fraction}"
            )
        if self.feature_ttl_seconds <= 0 or self.poll_interval_seconds <= 0:
            raise ValueError("feature_ttl_seconds and poll_interval_seconds must be positive")

    @property
    def behavior_width(self) -> int:
        """Width of the user behavior block (embedding_dim x behavior_seq_len)."""
        return self.embedding_dim * self.behavior_seq_len

    def items_to_prune(self, capacity: int) -> int:
        """Number of entries evicted per pruning pass for a cache of this capacity."""
        return max(1, int(capacity * self.cache_prune_fraction))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """
        Build a config from a dictionary, rejecting unknown keys.

        Raises:
            ValueError: If the dictionary contains keys that are not config fields
        """
        valid = {f.name for f in fields(cls)}
        unknown = set(data) - valid
        if unknown:
            raise ValueError(
                f"Invalid config keys: {sorted(unknown)}. Valid keys: {sorted(valid)}"
            )
        return cls(**data)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "EngineConfig":
        """
        Load engine configuration from a YAML file.

        Args:
            yaml_path: Path to YAML config file

        Returns:
            EngineConfig instance
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)


@dataclass
class Item2VecConfig:
    """
    Configuration for the default item embedding trainer.

    Attributes:
        embedding_dim: Output embedding dimension
        window: Max distance between a center item and a context item
        min_count: Items seen fewer times are left out of the table
        negatives: Negative samples per positive pair
        num_epochs: Passes over the sequence corpus
        batch_size: Pairs per optimizer step
        learning_rate: Adam learning rate
        seed: Random seed for reproducibility
    """

    embedding_dim: int = 16
    window: int = 5
    min_count: int = 1
    negatives: int = 5
    num_epochs: int = 5
    batch_size: int = 1024
    learning_rate: float = 0.01
    seed: int = 42

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FitterConfig:
    """
    Configuration for the XGBoost scoring model.

    Attributes:
        n_estimators: Number of boosting rounds
        max_depth: Tree depth
        learning_rate: Boosting learning rate
        colsample_bytree: Feature sampling ratio
        objective: XGBoost objective
        random_seed: Random seed for reproducibility
        mlflow_tracking_uri: MLflow tracking URI; tracking is off when None
        mlflow_experiment: Name of the MLflow experiment
    """

    n_estimators: int = 200
    max_depth: int = 6
    learning_rate: float = 0.1
    colsample_bytree: float = 0.8
    objective: str = "reg:squarederror"
    random_seed: int = 42

    mlflow_tracking_uri: Optional[str] = None
    mlflow_experiment: str = "rec_engine_scoring"

    def xgb_params(self) -> Dict[str, Any]:
        """Keyword arguments for xgb.XGBRegressor."""
        return {
            "n_estimators": self.n_estimators,
            "max_depth": self.max_depth,
            "learning_rate": self.learning_rate,
            "colsample_bytree": self.colsample_bytree,
            "objective": self.objective,
            "random_state": self.random_seed,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
