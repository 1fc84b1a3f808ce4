"""
Feature vector composition and concurrent sample assembly.

Modules:
    composer: compose(), build_behavior_block(), SampleVectorBuilder
    layout: LayoutTracker (per-batch layout consistency)
    assembly: SampleAssembler (event stream -> TrainingSet)
"""

from .composer import ComposedVector, SampleVectorBuilder, build_behavior_block, compose
from .layout import LayoutTracker
from .assembly import SampleAssembler

__all__ = [
    "ComposedVector",
    "SampleVectorBuilder",
    "build_behavior_block",
    "compose",
    "LayoutTracker",
    "SampleAssembler",
]
