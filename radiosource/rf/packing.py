"""
Parameter packing for radio source fits.

Maps the enabled subset of the physical unknowns {position, transmitted power,
path-loss exponent} to and from the dense parameter vector used by the
least-squares engine.

Packing order (fixed):
    x = [position (D components, if enabled),
         transmitted power in dBm (if enabled),
         path-loss exponent (if enabled)]

The propagation model Jacobian uses the same column order.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from radiosource.estimators.nonlinear_least_squares import NonlinearLSResult
from radiosource.rf.measurement_models import DEFAULT_PATH_LOSS_EXPONENT
from radiosource.rf.types import RadioSourceFit
from radiosource.utils.geometry import centroid_off_points

# 0 dBm = 1 mW
DEFAULT_TRANSMITTED_POWER_DBM = 0.0


@dataclass(frozen=True)
class ParameterLayout:
    """Which unknowns are estimated and where they live in the parameter vector.

    Attributes:
        dims: Position dimension D (2 or 3).
        position: Estimate the emitter position.
        transmitted_power: Estimate the transmitted power.
        path_loss: Estimate the path-loss exponent.

    Example:
        >>> layout = ParameterLayout(dims=3, position=True, transmitted_power=True)
        >>> layout.n_unknowns, layout.min_readings
        (4, 5)
        >>> layout.transmitted_power_index
        3
    """

    dims: int
    position: bool = True
    transmitted_power: bool = True
    path_loss: bool = False

    def __post_init__(self) -> None:
        if self.dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {self.dims}")

    @property
    def n_unknowns(self) -> int:
        """U = D·[position] + [transmitted power] + [path loss]."""
        return (
            (self.dims if self.position else 0)
            + (1 if self.transmitted_power else 0)
            + (1 if self.path_loss else 0)
        )

    @property
    def min_readings(self) -> int:
        return self.n_unknowns + 1

    @property
    def position_slice(self) -> Optional[slice]:
        if not self.position:
            return None
        return slice(0, self.dims)

    @property
    def transmitted_power_index(self) -> Optional[int]:
        if not self.transmitted_power:
            return None
        return self.dims if self.position else 0

    @property
    def path_loss_index(self) -> Optional[int]:
        if not self.path_loss:
            return None
        return self.n_unknowns - 1

    def split(
        self, x: np.ndarray
    ) -> Tuple[Optional[np.ndarray], Optional[float], Optional[float]]:
        """
        Split a parameter vector into its physical components.

        Args:
            x: Parameter vector, shape (U,).

        Returns:
            Tuple of (position, transmitted_power_dbm, path_loss_exponent);
            entries for disabled unknowns are None.
        """
        x = np.asarray(x, dtype=float)
        if x.shape != (self.n_unknowns,):
            raise ValueError(
                f"Parameter vector must have shape ({self.n_unknowns},), got {x.shape}"
            )

        position = x[self.position_slice] if self.position else None
        power = float(x[self.transmitted_power_index]) if self.transmitted_power else None
        path_loss = float(x[self.path_loss_index]) if self.path_loss else None
        return position, power, path_loss


def build_initial_vector(
    layout: ParameterLayout,
    reader_positions: np.ndarray,
    initial_position: Optional[np.ndarray] = None,
    initial_transmitted_power_dbm: Optional[float] = None,
    initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> np.ndarray:
    """
    Build the initial parameter vector for the enabled unknowns.

    Seeds:
        - position: initial_position, or the reader centroid (moved off a reader)
        - transmitted power: initial_transmitted_power_dbm, or 0 dBm (1 mW)
        - path-loss exponent: initial_path_loss_exponent (default 2.0)

    Args:
        layout: Parameter layout.
        reader_positions: Reader positions, shape (N, D).
        initial_position: Optional initial emitter position, shape (D,).
        initial_transmitted_power_dbm: Optional initial transmitted power in dBm.
        initial_path_loss_exponent: Initial path-loss exponent.

    Returns:
        Initial parameter vector, shape (U,).
    """
    x0 = np.zeros(layout.n_unknowns)

    if layout.position:
        x0[layout.position_slice] = initial_position_or_centroid(
            layout, reader_positions, initial_position
        )
    if layout.transmitted_power:
        x0[layout.transmitted_power_index] = (
            initial_transmitted_power_dbm
            if initial_transmitted_power_dbm is not None
            else DEFAULT_TRANSMITTED_POWER_DBM
        )
    if layout.path_loss:
        x0[layout.path_loss_index] = initial_path_loss_exponent

    return x0


def initial_position_or_centroid(
    layout: ParameterLayout,
    reader_positions: np.ndarray,
    initial_position: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Return the initial position if given, else the reader centroid moved off any reader."""
    if initial_position is not None:
        position = np.asarray(initial_position, dtype=float)
        if position.shape != (layout.dims,):
            raise ValueError(
                f"initial_position must have shape ({layout.dims},), got {position.shape}"
            )
        return position.copy()
    return centroid_off_points(reader_positions)


def unpack(
    layout: ParameterLayout,
    result: NonlinearLSResult,
    fixed_position: np.ndarray,
    fixed_transmitted_power_dbm: float,
    fixed_path_loss_exponent: float,
) -> RadioSourceFit:
    """
    Convert a solver result into a RadioSourceFit.

    Unknowns that were not estimated take their fixed (initial) values and
    get no variance. Covariance blocks are sliced per enabled group.

    Args:
        layout: Parameter layout used for the fit.
        result: Solver result (x, covariance, chi-square, ...).
        fixed_position: Position used when position estimation is disabled.
        fixed_transmitted_power_dbm: Power used when its estimation is disabled.
        fixed_path_loss_exponent: Exponent used when its estimation is disabled.

    Returns:
        RadioSourceFit with estimates, covariance blocks and diagnostics.
    """
    position, power_dbm, path_loss = layout.split(result.x)
    covariance = result.covariance

    position_covariance = None
    power_variance = None
    path_loss_variance = None

    if position is None:
        position = np.asarray(fixed_position, dtype=float).copy()
    elif covariance is not None:
        s = layout.position_slice
        position_covariance = covariance[s, s].copy()

    if power_dbm is None:
        power_dbm = float(fixed_transmitted_power_dbm)
    elif covariance is not None:
        i = layout.transmitted_power_index
        power_variance = float(covariance[i, i])

    if path_loss is None:
        path_loss = float(fixed_path_loss_exponent)
    elif covariance is not None:
        i = layout.path_loss_index
        path_loss_variance = float(covariance[i, i])

    return RadioSourceFit(
        position=np.array(position, dtype=float),
        transmitted_power_dbm=power_dbm,
        path_loss_exponent=path_loss,
        covariance=None if covariance is None else covariance.copy(),
        chi_square=result.chi_square,
        position_covariance=position_covariance,
        transmitted_power_variance=power_variance,
        path_loss_exponent_variance=path_loss_variance,
        iterations=result.iterations,
        converged=result.converged,
    )
