"""
Utility functions for radio source estimation.

This module provides geometry helpers shared by the RF estimators,
including singularity thresholds and covariance accuracy regions.
"""

from .geometry import (
    DEFAULT_CONFIDENCE,
    EPSILON_RANGE,
    Accuracy,
    centroid,
    centroid_off_points,
    has_distinct_positions,
    position_accuracy,
)

__all__ = [
    'DEFAULT_CONFIDENCE',
    'EPSILON_RANGE',
    'Accuracy',
    'centroid',
    'centroid_off_points',
    'has_distinct_positions',
    'position_accuracy',
]
