"""
Geometric utilities for radio source estimation.

Provides functions for:
- Singularity thresholds for distance-based models
- Reader position centroid and the initial emitter position seed
- Position accuracy (confidence ellipse/radius) from a covariance matrix
"""

from dataclasses import dataclass

import numpy as np
from scipy import stats


# Singularity threshold constants
EPSILON_RANGE = 1e-10  # Minimum reader-emitter distance (10 picometers)

# One-sigma probability mass of a 1D Gaussian
DEFAULT_CONFIDENCE = 0.6827


@dataclass(frozen=True)
class Accuracy:
    """Confidence region of an estimated position.

    Attributes:
        confidence: Probability mass enclosed by the region (0-1).
        radius: Radius of the smallest circle/sphere containing the region
                (length of the largest semi-axis), in meters.
        semi_axes: Semi-axis lengths of the confidence ellipse/ellipsoid,
                   sorted in decreasing order, shape (D,).
        axes: Unit direction of each semi-axis as columns, shape (D, D).
    """

    confidence: float
    radius: float
    semi_axes: np.ndarray
    axes: np.ndarray


def centroid(points: np.ndarray) -> np.ndarray:
    """
    Compute the centroid of a set of points.

    Args:
        points: Point coordinates, shape (N, d).

    Returns:
        Mean point, shape (d,).

    Example:
        >>> centroid(np.array([[0.0, 0.0], [2.0, 0.0], [2.0, 2.0], [0.0, 2.0]]))
        array([1., 1.])
    """
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or len(points) == 0:
        raise ValueError(f"points must be a non-empty (N, d) array, got shape {points.shape}")
    return points.mean(axis=0)


def centroid_off_points(
    points: np.ndarray, offset_fraction: float = 0.1, tol: float = EPSILON_RANGE
) -> np.ndarray:
    """
    Compute the centroid of a set of points, moved off any point it coincides with.

    Symmetric layouts (odd grids, rings with a center) put a point exactly on
    the centroid. In that case the centroid is shifted by offset_fraction of
    the RMS spread of the points, along the first candidate direction
    (diagonal, then the coordinate axes, then their opposites) that lands
    farther than tol from every point.

    Args:
        points: Point coordinates, shape (N, d).
        offset_fraction: Shift as a fraction of the RMS distance to the centroid.
        tol: Distance below which a point is considered to coincide.

    Returns:
        Seed point, shape (d,). Equal to the centroid when no point coincides
        with it or when all points are identical.
    """
    points = np.asarray(points, dtype=float)
    center = centroid(points)

    def _clear(candidate):
        return np.min(np.linalg.norm(points - candidate, axis=1)) > tol

    if _clear(center):
        return center

    spread = np.sqrt(np.mean(np.sum((points - center) ** 2, axis=1)))
    if spread <= tol:
        return center

    d = points.shape[1]
    directions = [np.ones(d) / np.sqrt(d)] + list(np.eye(d))
    directions += [-u for u in directions]
    for direction in directions:
        candidate = center + offset_fraction * spread * direction
        if _clear(candidate):
            return candidate
    return center


def has_distinct_positions(points: np.ndarray, tol: float = EPSILON_RANGE) -> bool:
    """
    Check whether a set of points contains at least two distinct positions.

    Args:
        points: Point coordinates, shape (N, d).
        tol: Distance below which two points are considered identical.

    Returns:
        True if some point lies farther than tol from the first one.
    """
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or len(points) == 0:
        raise ValueError(f"points must be a non-empty (N, d) array, got shape {points.shape}")
    distances = np.linalg.norm(points - points[0], axis=1)
    return bool(np.any(distances > tol))


def position_accuracy(
    covariance: np.ndarray,
    confidence: float = DEFAULT_CONFIDENCE,
) -> Accuracy:
    """
    Convert a position covariance into a confidence ellipse/ellipsoid.

    The squared Mahalanobis distance of a Gaussian position error follows a
    chi-square distribution with D degrees of freedom, so the region
        e' P⁻¹ e ≤ χ²_D(confidence)
    has semi-axes sqrt(λ_i · χ²_D(confidence)) along the eigenvectors of P.

    Args:
        covariance: Position covariance matrix, shape (D, D), D = 2 or 3.
        confidence: Probability mass of the region, in (0, 1).

    Returns:
        Accuracy with the confidence radius, semi-axes and axis directions.

    Example:
        >>> acc = position_accuracy(np.diag([4.0, 1.0]), confidence=0.95)
        >>> round(acc.radius, 2)
        4.9
    """
    P = np.asarray(covariance, dtype=float)
    if P.ndim != 2 or P.shape[0] != P.shape[1]:
        raise ValueError(f"covariance must be a square matrix, got shape {P.shape}")
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    if not np.allclose(P, P.T, rtol=1e-6, atol=1e-12):
        raise ValueError("covariance must be symmetric")

    dims = P.shape[0]
    eigvals, eigvecs = np.linalg.eigh(0.5 * (P + P.T))
    if np.any(eigvals < -1e-10 * max(1.0, np.max(np.abs(eigvals)))):
        raise ValueError(f"covariance must be positive semi-definite, got eigenvalues {eigvals}")
    eigvals = np.clip(eigvals, 0.0, None)

    threshold = stats.chi2.ppf(confidence, df=dims)

    # eigh returns ascending order; report largest axis first
    order = np.argsort(eigvals)[::-1]
    semi_axes = np.sqrt(eigvals[order] * threshold)
    axes = eigvecs[:, order]

    return Accuracy(
        confidence=confidence,
        radius=float(semi_axes[0]),
        semi_axes=semi_axes,
        axes=axes,
    )
