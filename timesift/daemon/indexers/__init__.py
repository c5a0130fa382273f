"""Indexers for timesift."""

from .inverted import InvertedIndex, IndexStatistics

__all__ = ["InvertedIndex", "IndexStatistics"]
