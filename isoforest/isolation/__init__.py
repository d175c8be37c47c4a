"""Isolation Forest implementation for anomaly detection.

This package provides the standard Isolation Forest algorithm using random
partitioning of the feature space.
"""

from .forest import IsolationForest
from .tree import IsolationTree, IsolationTreeNode, average_path_length, build_isolation_tree

__all__ = [
    "IsolationTree",
    "IsolationTreeNode",
    "IsolationForest",
    "average_path_length",
    "build_isolation_tree",
]
