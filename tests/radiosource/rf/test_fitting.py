"""
Unit tests for the radio source solver adapter (fit_radio_source).
"""

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiosource.exceptions import PropagationSingularityError
from radiosource.rf.config import SolverOptions
from radiosource.rf.fitting import fit_radio_source
from radiosource.rf.measurement_models import rss_pathloss
from radiosource.rf.model import RssiPropagationModel
from radiosource.rf.packing import ParameterLayout, build_initial_vector
from radiosource.rf.types import RadioSource, RssiReading

SOURCE = RadioSource.wifi_access_point("00:11:22:33:44:55", 2.4e9, ssid="lab")
TRUE_POSITION = np.array([2.0, 3.0])
TRUE_POWER_DBM = -5.0
READERS = np.array([
    [-10.0, -10.0], [10.0, -10.0], [10.0, 10.0], [-10.0, 10.0],
    [0.0, -12.0], [12.0, 0.0], [0.0, 12.0], [-12.0, 0.0],
])


def _readings(positions, emitter=TRUE_POSITION):
    return [
        RssiReading(
            SOURCE,
            rss_pathloss(TRUE_POWER_DBM, np.linalg.norm(emitter - p), SOURCE.frequency),
            p,
        )
        for p in positions
    ]


def _model(readings, layout=None):
    if layout is None:
        layout = ParameterLayout(dims=2)
    return RssiPropagationModel(layout, readings)


class TestFitRadioSource:
    """Test the adapter over the nonlinear least-squares engine."""

    @pytest.mark.parametrize("method", ["lm", "gn"])
    def test_noiseless_recovery(self, method):
        readings = _readings(READERS)
        model = _model(readings)
        x0 = build_initial_vector(model.layout, model.reader_positions,
                                  initial_position=np.array([1.0, 2.0]))

        result = fit_radio_source(model, x0, SolverOptions(method=method))

        assert_allclose(result.x, [2.0, 3.0, TRUE_POWER_DBM], atol=1e-6)
        assert result.converged
        assert result.chi_square < 1e-10
        assert result.covariance.shape == (3, 3)

    def test_default_options(self):
        model = _model(_readings(READERS))
        x0 = build_initial_vector(model.layout, model.reader_positions)

        result = fit_radio_source(model, x0)

        assert_allclose(result.x, [2.0, 3.0, TRUE_POWER_DBM], atol=1e-6)

    def test_collinear_readers_are_degenerate(self):
        """Readers on a line leave the perpendicular coordinate unobservable."""
        line = np.array([[-10.0, 0.0], [-5.0, 0.0], [0.0, 0.0], [5.0, 0.0], [10.0, 0.0], [15.0, 0.0]])
        model = _model(_readings(line))
        x0 = build_initial_vector(model.layout, model.reader_positions)

        with pytest.raises(PropagationSingularityError):
            fit_radio_source(model, x0)

    def test_reader_at_initial_position_raises(self):
        model = _model(_readings(READERS))
        x0 = np.array([10.0, 10.0, 0.0])

        with pytest.raises(PropagationSingularityError):
            fit_radio_source(model, x0)

    def test_non_convergence_is_reported(self, caplog):
        model = _model(_readings(READERS))
        x0 = build_initial_vector(model.layout, model.reader_positions)

        with caplog.at_level(logging.WARNING, logger="radiosource.rf.fitting"):
            with pytest.warns(RuntimeWarning, match="did not converge"):
                result = fit_radio_source(model, x0, SolverOptions(max_iter=1))

        assert not result.converged
        assert any("did not converge" in record.getMessage() for record in caplog.records)

    def test_stalled_fit_is_reported(self, caplog):
        """A fit where no damped step lowers the cost is not converged."""
        model = _model(_readings(READERS))
        true_jacobian = model.jacobian
        model.jacobian = lambda x: -true_jacobian(x)
        x0 = build_initial_vector(model.layout, model.reader_positions,
                                  initial_position=np.array([6.0, -4.0]))

        with caplog.at_level(logging.WARNING, logger="radiosource.rf.fitting"):
            with pytest.warns(RuntimeWarning, match="did not converge"):
                result = fit_radio_source(model, x0)

        assert not result.converged
        assert any("did not converge" in record.getMessage() for record in caplog.records)

    def test_weights_follow_reading_std(self):
        readings = [
            RssiReading(r.source, r.rssi, r.position, rssi_std=0.5 + i % 2)
            for i, r in enumerate(_readings(READERS))
        ]
        model = _model(readings)

        assert_allclose(model.weights[:2], [4.0, 1.0 / 1.5 ** 2])
