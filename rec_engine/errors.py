"""
Exception types raised by the engine.

The hierarchy mirrors how failures are handled:
- FeatureResolutionError: one user/item/behavior lookup failed. Recovered
  locally (event dropped during training, zero row during serving).
- LayoutMismatchError: two vectors of one batch disagree on segment widths.
  Always fatal for the batch.
- CapabilityError: a collaborator (event stream, embedding trainer, hooks,
  scoring model) failed. Propagated to the caller.
- MissingCapabilityError: a required collaborator is not implemented at all.
- PipelineCancelledError: the run context was cancelled.
"""


class RecEngineError(Exception):
    """Base class for all engine errors."""


class FeatureResolutionError(RecEngineError):
    """A single feature, embedding or behavior lookup failed."""


class LayoutMismatchError(RecEngineError):
    """A vector's segment widths differ from the layout fixed for its batch."""

    def __init__(self, field: str, expected: int, actual: int):
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(f"{field} mismatch: expected {expected}, got {actual}")


class CapabilityError(RecEngineError):
    """A collaborator capability failed."""


class MissingCapabilityError(CapabilityError):
    """A required capability is not implemented by the feature source."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"required capability not implemented: {capability}")


class PipelineCancelledError(RecEngineError):
    """The run context was cancelled while work was in flight."""
