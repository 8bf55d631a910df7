"""Configuration containers for radio source estimation.

``SolverOptions`` tunes the nonlinear least-squares engine and
``EstimatorConfig`` bundles everything needed to build an estimator, so that
script presets and ``config.json`` files can be turned into estimators.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from radiosource.rf.measurement_models import DEFAULT_PATH_LOSS_EXPONENT

_VALID_METHODS = ("lm", "gn")


@dataclass(frozen=True)
class SolverOptions:
    """Nonlinear least-squares settings.

    Attributes:
        method: "lm" (Levenberg-Marquardt, default) or "gn" (Gauss-Newton).
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on the step norm.
        mu0: Initial Levenberg-Marquardt damping.
    """

    method: str = "lm"
    max_iter: int = 100
    tol: float = 1e-10
    mu0: float = 1e-3

    def __post_init__(self) -> None:
        if self.method not in _VALID_METHODS:
            raise ValueError(f"method must be one of {_VALID_METHODS}, got {self.method!r}")
        if not isinstance(self.max_iter, int) or self.max_iter < 1:
            raise ValueError(f"max_iter must be a positive integer, got {self.max_iter!r}")
        if not self.tol > 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if not self.mu0 > 0:
            raise ValueError(f"mu0 must be positive, got {self.mu0}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SolverOptions":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "max_iter": self.max_iter,
            "tol": self.tol,
            "mu0": self.mu0,
        }


@dataclass
class EstimatorConfig:
    """Settings of an RSSI radio source estimator.

    Attributes:
        dims: Position dimension (2 or 3).
        position_estimation_enabled: Estimate the emitter position.
        transmitted_power_estimation_enabled: Estimate the transmitted power.
        path_loss_estimation_enabled: Estimate the path-loss exponent.
        initial_position: Initial (or fixed) emitter position, or None.
        initial_transmitted_power_dbm: Initial transmitted power in dBm, or None
            for the 0 dBm (1 mW) default.
        initial_path_loss_exponent: Initial path-loss exponent.
        solver: Nonlinear least-squares settings.

    Example:
        >>> config = EstimatorConfig.from_dict({"dims": 3, "path_loss_estimation_enabled": True})
        >>> config.to_dict()["solver"]["method"]
        'lm'
    """

    dims: int = 2
    position_estimation_enabled: bool = True
    transmitted_power_estimation_enabled: bool = True
    path_loss_estimation_enabled: bool = False
    initial_position: Optional[np.ndarray] = None
    initial_transmitted_power_dbm: Optional[float] = None
    initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT
    solver: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self) -> None:
        if self.dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {self.dims}")
        if self.initial_position is not None:
            position = np.asarray(self.initial_position, dtype=float)
            if position.shape != (self.dims,):
                raise ValueError(
                    f"initial_position must have shape ({self.dims},), got {position.shape}"
                )
            self.initial_position = position
        if isinstance(self.solver, dict):
            self.solver = SolverOptions.from_dict(self.solver)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EstimatorConfig":
        """Build a config from a plain dictionary (e.g. a parsed config.json)."""
        data = dict(data)
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable dictionary."""
        return {
            "dims": self.dims,
            "position_estimation_enabled": self.position_estimation_enabled,
            "transmitted_power_estimation_enabled": self.transmitted_power_estimation_enabled,
            "path_loss_estimation_enabled": self.path_loss_estimation_enabled,
            "initial_position": (
                None if self.initial_position is None else self.initial_position.tolist()
            ),
            "initial_transmitted_power_dbm": self.initial_transmitted_power_dbm,
            "initial_path_loss_exponent": self.initial_path_loss_exponent,
            "solver": self.solver.to_dict(),
        }
