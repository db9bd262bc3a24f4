"""
Fold Provider Module
====================

Responsibility:
- Deterministic V-fold (optionally repeated, optionally stratified) partitions.
- A single FoldSet shared read-only by every trial of a search run.
"""

from .fold_provider import Fold, FoldSet, make_folds

__all__ = ['Fold', 'FoldSet', 'make_folds']
