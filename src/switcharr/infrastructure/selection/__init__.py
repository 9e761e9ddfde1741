"""Candidate deduplication and priority ordering."""

from __future__ import annotations

from .deduplicator import Deduplicator
from .priority import PriorityQueue, PriorityScorer

__all__ = [
    "Deduplicator",
    "PriorityQueue",
    "PriorityScorer",
]
