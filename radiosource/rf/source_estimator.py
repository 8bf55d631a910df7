"""
RSSI radio source estimator.

Estimates the position, transmitted power and path-loss exponent of a single
radio emitter (WiFi access point, BLE beacon, ...) from RSSI readings taken at
known positions, by fitting the log-distance propagation model

    Pr(dBm) = P(dBm) + n·10·log10(c / (4π f)) - 10·n·log10(d)

with nonlinear weighted least squares. Any subset of the three unknowns can be
estimated; the others are held at their initial values.

Lifecycle:
    - The estimator is *ready* when it holds at least ``min_readings`` =
      U + 1 readings, where U is the number of enabled unknowns.
    - ``estimate()`` *locks* the estimator until it returns. While locked,
      every setter and ``estimate()`` itself raise LockedError. The lock is a
      plain reentrancy flag (e.g. against calls from listener callbacks), not a
      thread synchronization primitive.
    - The listener's ``on_estimate_start`` fires after locking, and
      ``on_estimate_end`` fires after the fit has been stored, before the
      estimator is unlocked. ``on_estimate_end`` is not called when the fit fails.
"""

import logging
from typing import Optional, Protocol, Sequence, Tuple

import numpy as np

from radiosource.exceptions import (
    LockedError,
    NotReadyError,
    PropagationSingularityError,
    RadioSourceEstimationError,
)
from radiosource.rf.config import EstimatorConfig, SolverOptions
from radiosource.rf.fitting import fit_radio_source
from radiosource.rf.measurement_models import (
    DEFAULT_PATH_LOSS_EXPONENT,
    dbm_to_power,
    power_to_dbm,
)
from radiosource.rf.model import RssiPropagationModel
from radiosource.rf.packing import (
    DEFAULT_TRANSMITTED_POWER_DBM,
    ParameterLayout,
    build_initial_vector,
    initial_position_or_centroid,
    unpack,
)
from radiosource.rf.types import LocatedRadioSource, RadioSource, RadioSourceFit, RssiReading
from radiosource.utils.geometry import has_distinct_positions

logger = logging.getLogger(__name__)


class RadioSourceEstimatorListener(Protocol):
    """Receives notifications when an estimation starts and ends."""

    def on_estimate_start(self, estimator: "RssiRadioSourceEstimator") -> None:
        ...

    def on_estimate_end(self, estimator: "RssiRadioSourceEstimator") -> None:
        ...


class RssiRadioSourceEstimator:
    """
    Joint estimator of a radio source position, transmitted power and path loss.

    By default the position and the transmitted power are estimated and the
    path-loss exponent is fixed at 2.0 (free space).

    Attributes:
        dims: Position dimension (2 or 3), fixed at construction.

    Example:
        >>> ap = RadioSource.wifi_access_point("00:11:22:33:44:55", 2.4e9)
        >>> readings = [RssiReading(ap, rssi, pos) for rssi, pos in samples]
        >>> estimator = RssiRadioSourceEstimator(dims=2, readings=readings)
        >>> fit = estimator.estimate()
        >>> fit.position, fit.transmitted_power_dbm
    """

    # Fixed dimension of the specialized subclasses
    DIMS: Optional[int] = None

    def __init__(
        self,
        dims: int = 2,
        readings: Optional[Sequence[RssiReading]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        position_estimation_enabled: bool = True,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        solver: Optional[SolverOptions] = None,
    ):
        """
        Initialize the estimator.

        Args:
            dims: Position dimension, 2 or 3.
            readings: Optional RSSI readings of a single radio source.
            listener: Optional listener notified at estimation start and end.
            initial_position: Initial emitter position, shape (dims,). When
                position estimation is disabled this is the fixed position.
                None means the centroid of the reader positions.
            initial_transmitted_power_dbm: Initial transmitted power in dBm.
                None means 0 dBm (1 mW).
            initial_path_loss_exponent: Initial path-loss exponent.
            position_estimation_enabled: Estimate the emitter position.
            transmitted_power_estimation_enabled: Estimate the transmitted power.
            path_loss_estimation_enabled: Estimate the path-loss exponent.
            solver: Nonlinear least-squares settings.

        Raises:
            ValueError: If dims is not 2 or 3, or any initial value or the
                readings are invalid.
        """
        if dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {dims}")
        self._dims = dims
        self._locked = False
        self._fit: Optional[RadioSourceFit] = None
        self._estimated_source: Optional[RadioSource] = None

        self._position_estimation_enabled = bool(position_estimation_enabled)
        self._transmitted_power_estimation_enabled = bool(transmitted_power_estimation_enabled)
        self._path_loss_estimation_enabled = bool(path_loss_estimation_enabled)

        self._initial_position: Optional[np.ndarray] = None
        self._initial_transmitted_power_dbm: Optional[float] = None
        self._initial_path_loss_exponent = DEFAULT_PATH_LOSS_EXPONENT
        self._solver = SolverOptions()
        self._listener = listener
        self._readings: Optional[Tuple[RssiReading, ...]] = None

        self.initial_position = initial_position
        self.initial_transmitted_power_dbm = initial_transmitted_power_dbm
        self.initial_path_loss_exponent = initial_path_loss_exponent
        if solver is not None:
            self.solver = solver
        if readings is not None:
            self.readings = readings

    @classmethod
    def from_config(
        cls,
        config: EstimatorConfig,
        readings: Optional[Sequence[RssiReading]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
    ) -> "RssiRadioSourceEstimator":
        """Build an estimator from an EstimatorConfig."""
        kwargs = {}
        if cls.DIMS is None:
            kwargs["dims"] = config.dims
        elif config.dims != cls.DIMS:
            raise ValueError(f"{cls.__name__} requires dims={cls.DIMS}, got {config.dims}")
        return cls(
            readings=readings,
            listener=listener,
            initial_position=config.initial_position,
            initial_transmitted_power_dbm=config.initial_transmitted_power_dbm,
            initial_path_loss_exponent=config.initial_path_loss_exponent,
            position_estimation_enabled=config.position_estimation_enabled,
            transmitted_power_estimation_enabled=config.transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=config.path_loss_estimation_enabled,
            solver=config.solver,
            **kwargs,
        )

    def to_config(self) -> EstimatorConfig:
        """Snapshot of the current configuration."""
        return EstimatorConfig(
            dims=self._dims,
            position_estimation_enabled=self._position_estimation_enabled,
            transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=self._path_loss_estimation_enabled,
            initial_position=self.initial_position,
            initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
            initial_path_loss_exponent=self._initial_path_loss_exponent,
            solver=self._solver,
        )

    def _check_not_locked(self) -> None:
        if self._locked:
            raise LockedError()

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------
    @property
    def dims(self) -> int:
        return self._dims

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def layout(self) -> ParameterLayout:
        """Parameter layout for the current enable flags."""
        return ParameterLayout(
            dims=self._dims,
            position=self._position_estimation_enabled,
            transmitted_power=self._transmitted_power_estimation_enabled,
            path_loss=self._path_loss_estimation_enabled,
        )

    @property
    def n_unknowns(self) -> int:
        return self.layout.n_unknowns

    @property
    def min_readings(self) -> int:
        """Minimum number of readings, U + 1 for U enabled unknowns."""
        return self.layout.min_readings

    @property
    def is_ready(self) -> bool:
        """True when at least one unknown is enabled and enough readings are held."""
        if self.n_unknowns == 0:
            return False
        return self._readings is not None and len(self._readings) >= self.min_readings

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def readings(self) -> Optional[Tuple[RssiReading, ...]]:
        return self._readings

    @readings.setter
    def readings(self, readings: Sequence[RssiReading]) -> None:
        self._check_not_locked()
        if readings is None:
            raise ValueError("readings must not be None")
        readings = tuple(readings)
        for reading in readings:
            if not isinstance(reading, RssiReading):
                raise ValueError(f"readings must contain RssiReading items, got {type(reading)}")
            if reading.dims != self._dims:
                raise ValueError(
                    f"Reading position has dimension {reading.dims}, expected {self._dims}"
                )
        source_ids = {reading.source_id for reading in readings}
        if len(source_ids) > 1:
            raise ValueError(
                f"All readings must come from one radio source, got {sorted(source_ids)}"
            )
        if len(readings) < self.min_readings:
            raise ValueError(
                f"At least {self.min_readings} readings are required, got {len(readings)}"
            )
        self._readings = readings

    @property
    def listener(self) -> Optional[RadioSourceEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[RadioSourceEstimatorListener]) -> None:
        self._check_not_locked()
        self._listener = listener

    @property
    def position_estimation_enabled(self) -> bool:
        return self._position_estimation_enabled

    @position_estimation_enabled.setter
    def position_estimation_enabled(self, enabled: bool) -> None:
        self._check_not_locked()
        self._position_estimation_enabled = bool(enabled)

    @property
    def transmitted_power_estimation_enabled(self) -> bool:
        return self._transmitted_power_estimation_enabled

    @transmitted_power_estimation_enabled.setter
    def transmitted_power_estimation_enabled(self, enabled: bool) -> None:
        self._check_not_locked()
        self._transmitted_power_estimation_enabled = bool(enabled)

    @property
    def path_loss_estimation_enabled(self) -> bool:
        return self._path_loss_estimation_enabled

    @path_loss_estimation_enabled.setter
    def path_loss_estimation_enabled(self, enabled: bool) -> None:
        self._check_not_locked()
        self._path_loss_estimation_enabled = bool(enabled)

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        if self._initial_position is None:
            return None
        return self._initial_position.copy()

    @initial_position.setter
    def initial_position(self, position: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        if position is None:
            self._initial_position = None
            return
        position = np.array(position, dtype=float)
        if position.shape != (self._dims,):
            raise ValueError(
                f"initial_position must have shape ({self._dims},), got {position.shape}"
            )
        if not np.all(np.isfinite(position)):
            raise ValueError("initial_position must be finite")
        self._initial_position = position

    @property
    def initial_transmitted_power_dbm(self) -> Optional[float]:
        return self._initial_transmitted_power_dbm

    @initial_transmitted_power_dbm.setter
    def initial_transmitted_power_dbm(self, power_dbm: Optional[float]) -> None:
        self._check_not_locked()
        if power_dbm is not None and not np.isfinite(power_dbm):
            raise ValueError(f"initial_transmitted_power_dbm must be finite, got {power_dbm}")
        self._initial_transmitted_power_dbm = None if power_dbm is None else float(power_dbm)

    @property
    def initial_transmitted_power(self) -> Optional[float]:
        """Initial transmitted power in mW (None when unset)."""
        if self._initial_transmitted_power_dbm is None:
            return None
        return dbm_to_power(self._initial_transmitted_power_dbm)

    @initial_transmitted_power.setter
    def initial_transmitted_power(self, power: Optional[float]) -> None:
        self._check_not_locked()
        if power is None:
            self._initial_transmitted_power_dbm = None
            return
        if power < 0:
            raise ValueError(f"Transmitted power must be non-negative, got {power}")
        self._initial_transmitted_power_dbm = power_to_dbm(power)

    @property
    def initial_path_loss_exponent(self) -> float:
        return self._initial_path_loss_exponent

    @initial_path_loss_exponent.setter
    def initial_path_loss_exponent(self, path_loss_exponent: float) -> None:
        self._check_not_locked()
        if not np.isfinite(path_loss_exponent):
            raise ValueError(
                f"initial_path_loss_exponent must be finite, got {path_loss_exponent}"
            )
        self._initial_path_loss_exponent = float(path_loss_exponent)

    @property
    def solver(self) -> SolverOptions:
        return self._solver

    @solver.setter
    def solver(self, options: SolverOptions) -> None:
        self._check_not_locked()
        if not isinstance(options, SolverOptions):
            raise TypeError(f"solver must be SolverOptions, got {type(options)}")
        self._solver = options

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------
    def estimate(self) -> RadioSourceFit:
        """
        Fit the enabled unknowns to the current readings.

        Returns:
            The new RadioSourceFit, also stored on the estimator.

        Raises:
            NotReadyError: If the estimator is not ready.
            LockedError: If an estimation is already in progress.
            PropagationSingularityError: If a reader coincides with the
                emitter or the reader geometry is degenerate.
            RadioSourceEstimationError: If the fit fails numerically.
        """
        if not self.is_ready:
            raise NotReadyError()
        if self._locked:
            raise LockedError()

        self._locked = True
        try:
            if self._listener is not None:
                self._listener.on_estimate_start(self)

            fit = self._run_fit()

            self._fit = fit
            self._estimated_source = self._readings[0].source
            if self._listener is not None:
                self._listener.on_estimate_end(self)
        finally:
            self._locked = False

        return fit

    def _run_fit(self) -> RadioSourceFit:
        layout = self.layout
        readings = self._readings
        reader_positions = np.vstack([r.position for r in readings])

        logger.debug(
            "Estimating radio source from %d readings (%d unknowns: position=%s, "
            "power=%s, path_loss=%s)",
            len(readings), layout.n_unknowns, layout.position,
            layout.transmitted_power, layout.path_loss,
        )

        position0 = initial_position_or_centroid(
            layout, reader_positions, self._initial_position
        )
        power0 = (
            self._initial_transmitted_power_dbm
            if self._initial_transmitted_power_dbm is not None
            else DEFAULT_TRANSMITTED_POWER_DBM
        )
        path_loss0 = self._initial_path_loss_exponent

        try:
            if layout.position and not has_distinct_positions(reader_positions):
                raise PropagationSingularityError(
                    "All readings share the same position; the emitter position "
                    "is unobservable"
                )

            model = RssiPropagationModel(
                layout,
                readings,
                position=position0,
                transmitted_power_dbm=power0,
                path_loss_exponent=path_loss0,
            )
            x0 = build_initial_vector(
                layout,
                reader_positions,
                initial_position=position0,
                initial_transmitted_power_dbm=power0,
                initial_path_loss_exponent=path_loss0,
            )
            result = fit_radio_source(model, x0, self._solver)
        except RadioSourceEstimationError as e:
            logger.warning("Radio source estimation failed: %s", e)
            raise

        fit = unpack(layout, result, position0, power0, path_loss0)
        logger.debug(
            "Radio source estimated in %d iterations: chi-square=%.4g, converged=%s",
            fit.iterations, fit.chi_square, fit.converged,
        )
        return fit

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    @property
    def fit(self) -> Optional[RadioSourceFit]:
        """Result of the last successful estimation, or None."""
        return self._fit

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        if self._fit is None:
            return None
        return self._fit.position.copy()

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        if self._fit is None or self._fit.position_covariance is None:
            return None
        return self._fit.position_covariance.copy()

    @property
    def estimated_transmitted_power_dbm(self) -> float:
        if self._fit is None:
            return DEFAULT_TRANSMITTED_POWER_DBM
        return self._fit.transmitted_power_dbm

    @property
    def estimated_transmitted_power(self) -> float:
        """Estimated transmitted power in mW (1.0 before any estimate)."""
        return dbm_to_power(self.estimated_transmitted_power_dbm)

    @property
    def estimated_transmitted_power_variance(self) -> Optional[float]:
        if self._fit is None:
            return None
        return self._fit.transmitted_power_variance

    @property
    def estimated_path_loss_exponent(self) -> float:
        if self._fit is None:
            return DEFAULT_PATH_LOSS_EXPONENT
        return self._fit.path_loss_exponent

    @property
    def estimated_path_loss_exponent_variance(self) -> Optional[float]:
        if self._fit is None:
            return None
        return self._fit.path_loss_exponent_variance

    @property
    def estimated_covariance(self) -> Optional[np.ndarray]:
        if self._fit is None or self._fit.covariance is None:
            return None
        return self._fit.covariance.copy()

    @property
    def chi_square(self) -> float:
        if self._fit is None:
            return 0.0
        return self._fit.chi_square

    def estimated_radio_source(self) -> Optional[LocatedRadioSource]:
        """
        Radio source located by the last successful estimation.

        Returns:
            LocatedRadioSource with the identity of the estimated source, its
            position (and covariance), transmitted power and path-loss
            exponent with their standard deviations, or None before any
            estimate.
        """
        if self._fit is None:
            return None
        return LocatedRadioSource(
            source=self._estimated_source,
            position=self._fit.position.copy(),
            transmitted_power_dbm=self._fit.transmitted_power_dbm,
            path_loss_exponent=self._fit.path_loss_exponent,
            position_covariance=self.estimated_position_covariance,
            transmitted_power_std=self._fit.transmitted_power_std,
            path_loss_exponent_std=self._fit.path_loss_exponent_std,
        )

    def __repr__(self) -> str:
        n_readings = 0 if self._readings is None else len(self._readings)
        return (
            f"{type(self).__name__}(dims={self._dims}, readings={n_readings}, "
            f"unknowns={self.n_unknowns}, ready={self.is_ready}, locked={self._locked})"
        )


class RssiRadioSourceEstimator2D(RssiRadioSourceEstimator):
    """RSSI radio source estimator for planar positions."""

    DIMS = 2

    def __init__(
        self,
        readings: Optional[Sequence[RssiReading]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        **kwargs,
    ):
        super().__init__(dims=self.DIMS, readings=readings, listener=listener, **kwargs)


class RssiRadioSourceEstimator3D(RssiRadioSourceEstimator):
    """RSSI radio source estimator for 3D positions."""

    DIMS = 3

    def __init__(
        self,
        readings: Optional[Sequence[RssiReading]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        **kwargs,
    ):
        super().__init__(dims=self.DIMS, readings=readings, listener=listener, **kwargs)
