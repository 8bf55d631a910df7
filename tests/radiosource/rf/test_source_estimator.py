"""
Unit tests for RssiRadioSourceEstimator: configuration, readiness, locking,
listener notifications and result accessors.
"""

import itertools

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiosource.exceptions import LockedError, NotReadyError
from radiosource.rf.config import EstimatorConfig, SolverOptions
from radiosource.rf.measurement_models import rss_pathloss
from radiosource.rf.source_estimator import (
    RssiRadioSourceEstimator,
    RssiRadioSourceEstimator2D,
    RssiRadioSourceEstimator3D,
)
from radiosource.rf.types import LocatedRadioSource, RadioSource, RssiReading

SOURCE = RadioSource.beacon("aa:bb:cc:dd:ee:ff", frequency=2.4e9, name="door")
TRUE_POSITION = np.array([2.0, 3.0])
TRUE_POWER_DBM = -5.0
READERS = np.array([
    [-10.0, -10.0], [10.0, -10.0], [10.0, 10.0], [-10.0, 10.0],
    [0.0, -12.0], [12.0, 0.0], [0.0, 12.0], [-12.0, 0.0],
])


def _readings(positions=READERS, emitter=TRUE_POSITION):
    return [
        RssiReading(
            SOURCE,
            rss_pathloss(TRUE_POWER_DBM, np.linalg.norm(emitter - p), SOURCE.frequency),
            p,
        )
        for p in positions
    ]


class RecordingListener:
    """Counts notifications and records the lock state seen in each callback."""

    def __init__(self):
        self.starts = 0
        self.ends = 0
        self.locked_seen = []

    def on_estimate_start(self, estimator):
        self.starts += 1
        self.locked_seen.append(estimator.is_locked)

    def on_estimate_end(self, estimator):
        self.ends += 1
        self.locked_seen.append(estimator.is_locked)


class MutatingListener(RecordingListener):
    """Tries every mutator and estimate() from inside the callbacks."""

    def __init__(self, readings):
        super().__init__()
        self.readings = readings
        self.locked_errors = []

    def _attempt(self, estimator):
        attempts = {
            "readings": lambda: setattr(estimator, "readings", self.readings),
            "listener": lambda: setattr(estimator, "listener", None),
            "position_estimation_enabled": lambda: setattr(
                estimator, "position_estimation_enabled", False),
            "transmitted_power_estimation_enabled": lambda: setattr(
                estimator, "transmitted_power_estimation_enabled", False),
            "path_loss_estimation_enabled": lambda: setattr(
                estimator, "path_loss_estimation_enabled", True),
            "initial_position": lambda: setattr(estimator, "initial_position", np.zeros(2)),
            "initial_transmitted_power_dbm": lambda: setattr(
                estimator, "initial_transmitted_power_dbm", 1.0),
            "initial_transmitted_power": lambda: setattr(
                estimator, "initial_transmitted_power", 1.0),
            "initial_path_loss_exponent": lambda: setattr(
                estimator, "initial_path_loss_exponent", 3.0),
            "solver": lambda: setattr(estimator, "solver", SolverOptions()),
            "estimate": estimator.estimate,
        }
        failed = set()
        for name, attempt in attempts.items():
            try:
                attempt()
            except LockedError:
                failed.add(name)
        self.locked_errors.append((set(attempts), failed))

    def on_estimate_start(self, estimator):
        super().on_estimate_start(estimator)
        self._attempt(estimator)

    def on_estimate_end(self, estimator):
        super().on_estimate_end(estimator)
        self._attempt(estimator)


class TestConstruction:
    """Test defaults and construction-time validation."""

    def test_defaults(self):
        estimator = RssiRadioSourceEstimator()

        assert estimator.dims == 2
        assert estimator.readings is None
        assert estimator.listener is None
        assert estimator.position_estimation_enabled
        assert estimator.transmitted_power_estimation_enabled
        assert not estimator.path_loss_estimation_enabled
        assert estimator.initial_position is None
        assert estimator.initial_transmitted_power_dbm is None
        assert estimator.initial_transmitted_power is None
        assert estimator.initial_path_loss_exponent == 2.0
        assert estimator.solver == SolverOptions()
        assert not estimator.is_ready
        assert not estimator.is_locked

    def test_result_defaults_before_estimate(self):
        estimator = RssiRadioSourceEstimator(readings=_readings())

        assert estimator.fit is None
        assert estimator.estimated_position is None
        assert estimator.estimated_position_covariance is None
        assert estimator.estimated_covariance is None
        assert estimator.estimated_transmitted_power_dbm == 0.0
        assert estimator.estimated_transmitted_power == 1.0
        assert estimator.estimated_transmitted_power_variance is None
        assert estimator.estimated_path_loss_exponent == 2.0
        assert estimator.estimated_path_loss_exponent_variance is None
        assert estimator.chi_square == 0.0
        assert estimator.estimated_radio_source() is None

    @pytest.mark.parametrize("dims", [1, 4])
    def test_invalid_dims(self, dims):
        with pytest.raises(ValueError):
            RssiRadioSourceEstimator(dims=dims)

    def test_dimension_specific_subclasses(self):
        assert RssiRadioSourceEstimator2D().dims == 2
        assert RssiRadioSourceEstimator3D().dims == 3
        assert RssiRadioSourceEstimator2D(readings=_readings()).is_ready

    def test_undersized_readings_rejected_at_construction(self):
        with pytest.raises(ValueError):
            RssiRadioSourceEstimator(readings=_readings()[:3])

    def test_initial_values(self):
        estimator = RssiRadioSourceEstimator(
            initial_position=[1.0, 2.0],
            initial_transmitted_power_dbm=10.0,
            initial_path_loss_exponent=2.5,
        )

        assert_allclose(estimator.initial_position, [1.0, 2.0])
        assert estimator.initial_transmitted_power_dbm == 10.0
        assert estimator.initial_transmitted_power == pytest.approx(10.0)
        assert estimator.initial_path_loss_exponent == 2.5


class TestMinReadings:
    """min_readings = U + 1, recomputed from the current flags."""

    @pytest.mark.parametrize("dims", [2, 3])
    @pytest.mark.parametrize("flags", list(itertools.product([True, False], repeat=3)))
    def test_min_readings(self, dims, flags):
        position, power, path_loss = flags
        estimator = RssiRadioSourceEstimator(
            dims=dims,
            position_estimation_enabled=position,
            transmitted_power_estimation_enabled=power,
            path_loss_estimation_enabled=path_loss,
        )

        assert estimator.n_unknowns == dims * position + power + path_loss
        assert estimator.min_readings == dims * position + power + path_loss + 1

    def test_min_readings_follow_flag_changes(self):
        estimator = RssiRadioSourceEstimator(dims=3)
        assert estimator.min_readings == 5

        estimator.path_loss_estimation_enabled = True
        assert estimator.min_readings == 6

        estimator.position_estimation_enabled = False
        assert estimator.min_readings == 3


class TestReadiness:
    """Test the ready state."""

    def test_ready_with_enough_readings(self):
        estimator = RssiRadioSourceEstimator()
        estimator.readings = _readings()[:4]

        assert estimator.is_ready

    def test_flag_change_can_make_estimator_not_ready(self):
        estimator = RssiRadioSourceEstimator(readings=_readings()[:4])
        assert estimator.is_ready

        estimator.path_loss_estimation_enabled = True

        assert estimator.min_readings == 5
        assert not estimator.is_ready

    def test_no_enabled_unknowns_is_never_ready(self):
        estimator = RssiRadioSourceEstimator(
            readings=_readings(),
            position_estimation_enabled=False,
            transmitted_power_estimation_enabled=False,
            path_loss_estimation_enabled=False,
        )

        assert estimator.min_readings == 1
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_estimate_when_not_ready(self):
        listener = RecordingListener()
        estimator = RssiRadioSourceEstimator(listener=listener)

        with pytest.raises(NotReadyError):
            estimator.estimate()

        assert not estimator.is_locked
        assert estimator.fit is None
        assert estimator.estimated_transmitted_power == 1.0
        assert listener.starts == 0


class TestReadingsValidation:
    """Readings are validated when assigned."""

    def test_none_rejected(self):
        estimator = RssiRadioSourceEstimator()
        with pytest.raises(ValueError):
            estimator.readings = None

    def test_undersized_rejected_and_state_kept(self):
        readings = _readings()
        estimator = RssiRadioSourceEstimator(readings=readings)

        with pytest.raises(ValueError):
            estimator.readings = readings[:2]

        assert len(estimator.readings) == len(readings)

    def test_wrong_dimension_rejected(self):
        estimator = RssiRadioSourceEstimator(dims=3)
        with pytest.raises(ValueError):
            estimator.readings = _readings()

    def test_non_reading_items_rejected(self):
        estimator = RssiRadioSourceEstimator()
        with pytest.raises(ValueError):
            estimator.readings = [(-50.0, np.zeros(2))] * 5

    def test_mixed_sources_rejected(self):
        other = RadioSource.wifi_access_point("00:11:22:33:44:55", 2.4e9)
        readings = _readings()
        readings[-1] = RssiReading(other, readings[-1].rssi, readings[-1].position)
        estimator = RssiRadioSourceEstimator()

        with pytest.raises(ValueError):
            estimator.readings = readings
        assert estimator.readings is None

    def test_readings_are_held_as_tuple(self):
        readings = _readings()
        estimator = RssiRadioSourceEstimator(readings=readings)
        readings.pop()

        assert len(estimator.readings) == len(READERS)


class TestConfigurationValidation:
    """Invalid initial values raise ValueError and leave state unchanged."""

    def test_negative_linear_power_rejected(self):
        estimator = RssiRadioSourceEstimator(initial_transmitted_power_dbm=3.0)

        with pytest.raises(ValueError):
            estimator.initial_transmitted_power = -1.0

        assert estimator.initial_transmitted_power_dbm == 3.0

    def test_linear_power_sets_dbm(self):
        estimator = RssiRadioSourceEstimator()

        estimator.initial_transmitted_power = 2.0

        assert estimator.initial_transmitted_power_dbm == pytest.approx(3.0103, abs=1e-4)
        estimator.initial_transmitted_power = None
        assert estimator.initial_transmitted_power_dbm is None

    def test_initial_position_dimension_checked(self):
        estimator = RssiRadioSourceEstimator(dims=3)
        with pytest.raises(ValueError):
            estimator.initial_position = np.zeros(2)

    def test_initial_position_is_copied(self):
        position = np.array([1.0, 1.0])
        estimator = RssiRadioSourceEstimator(initial_position=position)
        position[0] = 5.0

        assert_allclose(estimator.initial_position, [1.0, 1.0])

    def test_non_finite_path_loss_rejected(self):
        estimator = RssiRadioSourceEstimator()
        with pytest.raises(ValueError):
            estimator.initial_path_loss_exponent = float("nan")

    def test_solver_type_checked(self):
        estimator = RssiRadioSourceEstimator()
        with pytest.raises(TypeError):
            estimator.solver = {"method": "gn"}


class TestLocking:
    """Mutators and estimate() fail while an estimation is in progress."""

    def test_listener_sees_locked_estimator(self):
        listener = RecordingListener()
        estimator = RssiRadioSourceEstimator(readings=_readings(), listener=listener)

        estimator.estimate()

        assert listener.starts == 1
        assert listener.ends == 1
        assert listener.locked_seen == [True, True]
        assert not estimator.is_locked

    def test_every_mutator_fails_inside_callbacks(self):
        readings = _readings()
        listener = MutatingListener(readings)
        estimator = RssiRadioSourceEstimator(readings=readings, listener=listener)

        estimator.estimate()

        assert len(listener.locked_errors) == 2
        for attempted, failed in listener.locked_errors:
            assert failed == attempted

        # Configuration unchanged by the attempts
        assert estimator.listener is listener
        assert estimator.position_estimation_enabled
        assert estimator.transmitted_power_estimation_enabled
        assert not estimator.path_loss_estimation_enabled
        assert estimator.initial_position is None
        assert estimator.initial_transmitted_power_dbm is None
        assert estimator.initial_path_loss_exponent == 2.0

    def test_results_readable_inside_end_callback(self):
        seen = {}

        class Listener:
            def on_estimate_start(self, estimator):
                seen["start"] = estimator.estimated_position

            def on_estimate_end(self, estimator):
                seen["end"] = estimator.estimated_position

        estimator = RssiRadioSourceEstimator(readings=_readings(), listener=Listener())
        estimator.estimate()

        assert seen["start"] is None
        assert_allclose(seen["end"], TRUE_POSITION, atol=1e-6)

    def test_listener_can_be_replaced_between_estimates(self):
        first, second = RecordingListener(), RecordingListener()
        estimator = RssiRadioSourceEstimator(readings=_readings(), listener=first)

        estimator.estimate()
        estimator.listener = second
        estimator.estimate()

        assert (first.starts, first.ends) == (1, 1)
        assert (second.starts, second.ends) == (1, 1)


class TestEstimate:
    """Test estimate() results and repeated runs."""

    def test_default_flags_recover_position_and_power(self):
        estimator = RssiRadioSourceEstimator(readings=_readings())

        fit = estimator.estimate()

        assert fit is estimator.fit
        assert_allclose(estimator.estimated_position, TRUE_POSITION, atol=1e-6)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TRUE_POWER_DBM, abs=1e-6)
        assert estimator.estimated_transmitted_power == pytest.approx(10 ** (TRUE_POWER_DBM / 10))
        assert estimator.estimated_path_loss_exponent == 2.0
        assert estimator.estimated_path_loss_exponent_variance is None
        assert estimator.estimated_covariance.shape == (3, 3)
        assert estimator.estimated_position_covariance.shape == (2, 2)
        assert estimator.chi_square < 1e-10

    def test_estimate_is_idempotent(self):
        listener = RecordingListener()
        estimator = RssiRadioSourceEstimator(readings=_readings(), listener=listener)

        first = estimator.estimate()
        assert (listener.starts, listener.ends) == (1, 1)
        second = estimator.estimate()
        assert (listener.starts, listener.ends) == (2, 2)

        assert first is not second
        assert_allclose(second.position, first.position)
        assert second.transmitted_power_dbm == first.transmitted_power_dbm
        assert second.chi_square == first.chi_square
        assert_allclose(second.covariance, first.covariance)

    def test_accessors_return_copies(self):
        estimator = RssiRadioSourceEstimator(readings=_readings())
        estimator.estimate()

        position = estimator.estimated_position
        position[:] = 0.0

        assert_allclose(estimator.estimated_position, TRUE_POSITION, atol=1e-6)

    def test_estimated_radio_source(self):
        estimator = RssiRadioSourceEstimator(readings=_readings())
        estimator.estimate()

        located = estimator.estimated_radio_source()

        assert isinstance(located, LocatedRadioSource)
        assert located.source is SOURCE
        assert located.frequency == 2.4e9
        assert_allclose(located.position, TRUE_POSITION, atol=1e-6)
        assert located.transmitted_power_dbm == pytest.approx(TRUE_POWER_DBM, abs=1e-6)
        assert located.path_loss_exponent == 2.0
        assert located.path_loss_exponent_std is None
        assert located.transmitted_power_std is not None
        assert located.position_accuracy() is not None

    def test_repr(self):
        estimator = RssiRadioSourceEstimator3D()
        assert "dims=3" in repr(estimator)
        assert "ready=False" in repr(estimator)


class TestConfig:
    """Test building estimators from configuration."""

    def test_from_config(self):
        config = EstimatorConfig(
            dims=2,
            path_loss_estimation_enabled=True,
            initial_position=[1.0, 1.0],
            initial_transmitted_power_dbm=-3.0,
            initial_path_loss_exponent=2.2,
            solver=SolverOptions(method="gn", max_iter=50),
        )

        estimator = RssiRadioSourceEstimator.from_config(config, readings=_readings())

        assert estimator.dims == 2
        assert estimator.path_loss_estimation_enabled
        assert_allclose(estimator.initial_position, [1.0, 1.0])
        assert estimator.initial_transmitted_power_dbm == -3.0
        assert estimator.initial_path_loss_exponent == 2.2
        assert estimator.solver.method == "gn"
        assert estimator.is_ready

    def test_to_config_round_trip(self):
        estimator = RssiRadioSourceEstimator(
            dims=3, initial_position=[0.0, 1.0, 2.0], transmitted_power_estimation_enabled=False
        )

        config = estimator.to_config()
        rebuilt = RssiRadioSourceEstimator.from_config(EstimatorConfig.from_dict(config.to_dict()))

        assert rebuilt.to_config().to_dict() == config.to_dict()

    def test_subclass_from_config_checks_dims(self):
        assert RssiRadioSourceEstimator3D.from_config(EstimatorConfig(dims=3)).dims == 3
        with pytest.raises(ValueError):
            RssiRadioSourceEstimator3D.from_config(EstimatorConfig(dims=2))
