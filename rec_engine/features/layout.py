"""
Layout consistency tracking for one batch of composed vectors.

The first accepted vector fixes the user width, the item width and the total
width, and from them the LayoutRanges. Every later vector must match all
three. A mismatch means a data or schema bug upstream (e.g. one item type
stored with an extra column) and must never be padded or truncated into the
matrix.
"""

from typing import Optional

from rec_engine.errors import LayoutMismatchError
from rec_engine.types import LayoutRanges


class LayoutTracker:
    """
    Example:
        >>> tracker = LayoutTracker(behavior_width=6, embedding_width=2)
        >>> tracker.accept(11, user_width=2, item_width=1)
        >>> tracker.layout.context
        (10, 11)
        >>> tracker.accept(12, user_width=2, item_width=2)
        Traceback (most recent call last):
        LayoutMismatchError: item feature width mismatch: expected 1, got 2
    """

    def __init__(self, behavior_width: int, embedding_width: int):
        self.behavior_width = behavior_width
        self.embedding_width = embedding_width
        self.layout: Optional[LayoutRanges] = None
        self.user_width = 0
        self.item_width = 0
        self.width = 0

    @property
    def established(self) -> bool:
        return self.layout is not None

    def accept(self, vector_width: int, user_width: int, item_width: int) -> None:
        """
        Record one vector's widths.

        Raises:
            LayoutMismatchError: If the widths differ from the established layout
        """
        if self.layout is None:
            layout = LayoutRanges.from_widths(
                user_width, self.behavior_width, self.embedding_width, item_width
            )
            if layout.width != vector_width:
                raise LayoutMismatchError("sample width", layout.width, vector_width)
            self.layout = layout
            self.user_width = user_width
            self.item_width = item_width
            self.width = vector_width
            return

        if user_width != self.user_width:
            raise LayoutMismatchError("user feature width", self.user_width, user_width)
        if item_width != self.item_width:
            raise LayoutMismatchError("item feature width", self.item_width, item_width)
        if vector_width != self.width:
            raise LayoutMismatchError("sample width", self.width, vector_width)
