"""
RSSI propagation model bound to a set of readings.

Predicts the RSSI each reader should observe for a hypothesized parameter
vector and provides the analytic Jacobian of the prediction in the dBm domain:

    h_i(x) = P + n·(kdB_i - 10·log10(d_i))
    kdB_i  = 10·log10(c / (4π f_i)),   d_i = ‖p - p_i‖

    ∂h_i/∂p_j = -10·n·(p_j - p_ij) / (ln(10)·d_i²)
    ∂h_i/∂P   = 1
    ∂h_i/∂n   = kdB_i - 10·log10(d_i)

where p is the emitter position, P the transmitted power in dBm and n the
path-loss exponent. Columns follow the ParameterLayout packing order.
"""

from typing import Optional, Sequence

import numpy as np

from radiosource.exceptions import PropagationSingularityError
from radiosource.rf.measurement_models import DEFAULT_PATH_LOSS_EXPONENT, wavelength_db
from radiosource.rf.packing import DEFAULT_TRANSMITTED_POWER_DBM, ParameterLayout
from radiosource.rf.types import RssiReading
from radiosource.utils.geometry import EPSILON_RANGE


class RssiPropagationModel:
    """
    Log-distance propagation model over a fixed set of RSSI readings.

    Attributes:
        layout: Which unknowns are packed in the parameter vector.
        reader_positions: Reader positions, shape (N, D).
        frequencies: Carrier frequencies, shape (N,).
        observations: Observed RSSI values in dBm, shape (N,).
        weights: Least-squares weights 1/σ², shape (N,).
    """

    def __init__(
        self,
        layout: ParameterLayout,
        readings: Sequence[RssiReading],
        position: Optional[np.ndarray] = None,
        transmitted_power_dbm: float = DEFAULT_TRANSMITTED_POWER_DBM,
        path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    ):
        """
        Initialize the model.

        Args:
            layout: Parameter layout.
            readings: RSSI readings (all with dimension layout.dims).
            position: Emitter position used when position is not estimated.
            transmitted_power_dbm: Power used when it is not estimated.
            path_loss_exponent: Exponent used when it is not estimated.
        """
        if len(readings) == 0:
            raise ValueError("At least one reading is required")

        self.layout = layout
        self.reader_positions = np.vstack([r.position for r in readings])
        if self.reader_positions.shape[1] != layout.dims:
            raise ValueError(
                f"Readings have dimension {self.reader_positions.shape[1]}, "
                f"expected {layout.dims}"
            )
        self.frequencies = np.array([r.frequency for r in readings], dtype=float)
        self.observations = np.array([r.rssi for r in readings], dtype=float)
        self.weights = np.array([r.weight for r in readings], dtype=float)
        self._kdb = np.array([wavelength_db(f) for f in self.frequencies])

        if not layout.position:
            if position is None:
                raise ValueError("A fixed position is required when position is not estimated")
            position = np.asarray(position, dtype=float)
            if position.shape != (layout.dims,):
                raise ValueError(
                    f"position must have shape ({layout.dims},), got {position.shape}"
                )
        self.fixed_position = position
        self.fixed_transmitted_power_dbm = transmitted_power_dbm
        self.fixed_path_loss_exponent = path_loss_exponent

    @property
    def n_readings(self) -> int:
        return len(self.observations)

    def unknowns(self, x: np.ndarray):
        """Return (position, transmitted_power_dbm, path_loss_exponent) for x."""
        position, power, path_loss = self.layout.split(x)
        if position is None:
            position = self.fixed_position
        if power is None:
            power = self.fixed_transmitted_power_dbm
        if path_loss is None:
            path_loss = self.fixed_path_loss_exponent
        return position, power, path_loss

    def _diff_and_distances(self, position: np.ndarray):
        diff = position - self.reader_positions
        distances = np.linalg.norm(diff, axis=1)
        singular = distances < EPSILON_RANGE
        if np.any(singular):
            raise PropagationSingularityError(
                f"{int(np.sum(singular))} reading(s) at zero distance from the "
                f"emitter position {position}; the log-distance model is undefined"
            )
        return diff, distances

    def predict(self, x: np.ndarray) -> np.ndarray:
        """
        Predict RSSI (dBm) at every reader.

        Args:
            x: Parameter vector, shape (U,).

        Returns:
            Predicted RSSI values, shape (N,).

        Raises:
            PropagationSingularityError: If a reader coincides with the emitter.
        """
        position, power, path_loss = self.unknowns(x)
        _, distances = self._diff_and_distances(position)
        return power + path_loss * (self._kdb - 10.0 * np.log10(distances))

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        """
        Jacobian of predict() with respect to the packed unknowns.

        Args:
            x: Parameter vector, shape (U,).

        Returns:
            Jacobian matrix, shape (N, U).

        Raises:
            PropagationSingularityError: If a reader coincides with the emitter.
        """
        position, _, path_loss = self.unknowns(x)
        diff, distances = self._diff_and_distances(position)

        J = np.zeros((self.n_readings, self.layout.n_unknowns))
        if self.layout.position:
            J[:, self.layout.position_slice] = (
                -10.0 * path_loss * diff / (np.log(10.0) * distances[:, None] ** 2)
            )
        if self.layout.transmitted_power:
            J[:, self.layout.transmitted_power_index] = 1.0
        if self.layout.path_loss:
            J[:, self.layout.path_loss_index] = self._kdb - 10.0 * np.log10(distances)
        return J

    def residuals(self, x: np.ndarray) -> np.ndarray:
        """Residuals r = observed - predicted (dBm), shape (N,)."""
        return self.observations - self.predict(x)

    def chi_square(self, x: np.ndarray) -> float:
        """Weighted sum of squared residuals Σ w_i r_i²."""
        r = self.residuals(x)
        return float(np.sum(self.weights * r ** 2))
