"""
Unit tests for geometry helpers (centroid, distinct positions, accuracy).
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from radiosource.utils.geometry import (
    DEFAULT_CONFIDENCE,
    Accuracy,
    centroid,
    centroid_off_points,
    has_distinct_positions,
    position_accuracy,
)


class TestCentroid:
    def test_square(self):
        points = np.array([[0.0, 0.0], [2.0, 0.0], [2.0, 2.0], [0.0, 2.0]])
        assert_allclose(centroid(points), [1.0, 1.0])

    def test_3d(self):
        points = np.array([[0.0, 0.0, 0.0], [3.0, 3.0, 3.0]])
        assert_allclose(centroid(points), [1.5, 1.5, 1.5])

    @pytest.mark.parametrize("points", [np.zeros((0, 2)), np.zeros(3)])
    def test_invalid(self, points):
        with pytest.raises(ValueError):
            centroid(points)


class TestDistinctPositions:
    def test_identical_points(self):
        assert not has_distinct_positions(np.ones((5, 2)))

    def test_single_point(self):
        assert not has_distinct_positions(np.array([[1.0, 2.0, 3.0]]))

    def test_distinct_points(self):
        points = np.array([[1.0, 1.0], [1.0, 1.0], [1.0, 1.5]])
        assert has_distinct_positions(points)

    def test_tolerance(self):
        points = np.array([[0.0, 0.0], [1e-3, 0.0]])
        assert has_distinct_positions(points)
        assert not has_distinct_positions(points, tol=1e-2)


class TestPositionAccuracy:
    """Confidence ellipse from a position covariance."""

    def test_diagonal_covariance_2d(self):
        accuracy = position_accuracy(np.diag([4.0, 1.0]), confidence=0.95)
        k = stats.chi2.ppf(0.95, df=2)

        assert isinstance(accuracy, Accuracy)
        assert accuracy.confidence == 0.95
        assert_allclose(accuracy.semi_axes, [2.0 * np.sqrt(k), np.sqrt(k)])
        assert accuracy.radius == pytest.approx(2.0 * np.sqrt(k))
        assert_allclose(np.abs(accuracy.axes[:, 0]), [1.0, 0.0], atol=1e-12)

    def test_3d_uses_three_degrees_of_freedom(self):
        accuracy = position_accuracy(np.eye(3) * 0.25)
        k = stats.chi2.ppf(DEFAULT_CONFIDENCE, df=3)

        assert_allclose(accuracy.semi_axes, np.full(3, 0.5 * np.sqrt(k)))
        assert accuracy.axes.shape == (3, 3)

    def test_rotated_covariance(self):
        angle = np.pi / 6
        R = np.array([[np.cos(angle), -np.sin(angle)], [np.sin(angle), np.cos(angle)]])
        covariance = R @ np.diag([9.0, 1.0]) @ R.T

        accuracy = position_accuracy(covariance, confidence=0.5)
        k = stats.chi2.ppf(0.5, df=2)

        assert_allclose(accuracy.semi_axes, [3.0 * np.sqrt(k), np.sqrt(k)])
        assert abs(accuracy.axes[:, 0] @ R[:, 0]) == pytest.approx(1.0)

    def test_larger_confidence_gives_larger_radius(self):
        covariance = np.diag([2.0, 1.0])
        assert (
            position_accuracy(covariance, 0.99).radius
            > position_accuracy(covariance, 0.68).radius
        )

    @pytest.mark.parametrize("confidence", [0.0, 1.0, 1.5])
    def test_invalid_confidence(self, confidence):
        with pytest.raises(ValueError):
            position_accuracy(np.eye(2), confidence)

    def test_not_symmetric(self):
        with pytest.raises(ValueError):
            position_accuracy(np.array([[1.0, 0.5], [0.0, 1.0]]))

    def test_not_positive_semidefinite(self):
        with pytest.raises(ValueError):
            position_accuracy(np.diag([1.0, -1.0]))

    def test_not_square(self):
        with pytest.raises(ValueError):
            position_accuracy(np.ones((2, 3)))


class TestCentroidOffPoints:
    """Centroid seed that never coincides with an input point."""

    def test_plain_centroid_when_clear(self):
        points = np.array([[0.0, 0.0], [2.0, 0.0], [2.0, 2.0], [0.0, 2.0]])
        assert_allclose(centroid_off_points(points), [1.0, 1.0])

    def test_odd_grid_center_is_avoided(self):
        ticks = np.linspace(0.0, 20.0, 3)
        xx, yy = np.meshgrid(ticks, ticks)
        points = np.column_stack([xx.ravel(), yy.ravel()])

        seed = centroid_off_points(points)

        assert np.min(np.linalg.norm(points - seed, axis=1)) > 0.5
        assert np.linalg.norm(seed - [10.0, 10.0]) < 0.2 * 20.0

    def test_3d_center_is_avoided(self):
        points = np.vstack([np.zeros(3), np.eye(3), -np.eye(3)])

        seed = centroid_off_points(points)

        assert np.min(np.linalg.norm(points - seed, axis=1)) > 1e-3

    def test_identical_points_return_centroid(self):
        assert_allclose(centroid_off_points(np.ones((4, 2))), [1.0, 1.0])
