"""
Run context carried through every engine call.

A RunContext tags work with a stage (training vs prediction) so optional
capabilities can branch on it, and carries a cancellation signal shared by
every context derived from it.
"""

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from .errors import PipelineCancelledError


class Stage(Enum):
    """Execution stage marker."""
    UNSET = "unset"
    TRAIN = "train"
    PREDICT = "predict"


@dataclass(frozen=True)
class RunContext:
    """
    Immutable execution context.

    Derived contexts (with_stage, with_values) share the parent's
    cancellation event, so cancelling any of them cancels all.

    Example:
        >>> ctx = RunContext()
        >>> train_ctx = ctx.with_stage(Stage.TRAIN)
        >>> ctx.cancel()
        >>> train_ctx.cancelled
        True
    """

    stage: Stage = Stage.UNSET
    values: Dict[str, Any] = field(default_factory=dict)
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def with_stage(self, stage: Stage) -> "RunContext":
        return replace(self, stage=stage)

    def with_values(self, **values: Any) -> "RunContext":
        return replace(self, values={**self.values, **values})

    def value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise PipelineCancelledError("run context cancelled")

    def wait(self, timeout: Optional[float]) -> bool:
        """Block up to timeout seconds; returns True if cancelled meanwhile."""
        return self._cancel_event.wait(timeout)
