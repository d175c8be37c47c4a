"""Anomaly Detection package.

This package provides an Isolation Forest implementation for anomaly detection:
- isolation: Isolation Forest using random axis-aligned partitioning
- exceptions: errors raised for invalid configuration or input
"""

from . import exceptions
from . import isolation
from .isolation import IsolationForest

__all__ = [
    "exceptions",
    "isolation",
    "IsolationForest",
]
