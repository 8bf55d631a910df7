"""
Solver adapter for radio source fits.

Runs the nonlinear least-squares engine over an RssiPropagationModel and
separates numerical failure (singular normal equations, non-finite results)
from ordinary non-convergence, which is only reported.
"""

import logging
import warnings
from typing import Optional

import numpy as np

from radiosource.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    SingularNormalEquationsError,
    solve_nonlinear_ls,
)
from radiosource.exceptions import PropagationSingularityError, RadioSourceEstimationError
from radiosource.rf.config import SolverOptions
from radiosource.rf.model import RssiPropagationModel

logger = logging.getLogger(__name__)


def fit_radio_source(
    model: RssiPropagationModel,
    x0: np.ndarray,
    options: Optional[SolverOptions] = None,
) -> NonlinearLSResult:
    """
    Fit the packed unknowns of a propagation model to its observations.

    Args:
        model: Propagation model bound to the readings.
        x0: Initial parameter vector, shape (U,).
        options: Solver settings (defaults to SolverOptions()).

    Returns:
        NonlinearLSResult with the fitted vector, covariance and chi-square.

    Raises:
        PropagationSingularityError: If a reader coincides with the emitter or
            the normal equations are singular / not positive definite
            (e.g. too few distinct reader positions).
        RadioSourceEstimationError: If the fit produces non-finite values.
    """
    if options is None:
        options = SolverOptions()

    try:
        result = solve_nonlinear_ls(
            h=model.predict,
            jacobian=model.jacobian,
            y=model.observations,
            x0=x0,
            weights=model.weights,
            method=options.method,
            max_iter=options.max_iter,
            tol=options.tol,
            return_covariance=True,
            raise_on_singular=True,
            mu0=options.mu0,
        )
    except SingularNormalEquationsError as e:
        raise PropagationSingularityError(f"Degenerate reader geometry: {e}") from e
    except np.linalg.LinAlgError as e:
        raise RadioSourceEstimationError(f"Linear algebra failure during fit: {e}") from e

    if not np.all(np.isfinite(result.x)) or not np.isfinite(result.chi_square):
        raise RadioSourceEstimationError("Fit produced non-finite parameters")
    if result.covariance is None or not np.all(np.isfinite(result.covariance)):
        raise RadioSourceEstimationError("Fit produced a non-finite covariance")

    if not result.converged:
        message = (
            f"Radio source fit did not converge after {result.iterations} iterations "
            f"(chi-square {result.chi_square:.4g})"
        )
        logger.warning(message)
        warnings.warn(message, RuntimeWarning)

    return result
