"""
Estimation engines used by the radio source estimators.

Available solvers:
    - Nonlinear Least Squares (Gauss-Newton, Levenberg-Marquardt)
"""

from radiosource.estimators.nonlinear_least_squares import (
    gauss_newton,
    levenberg_marquardt,
    solve_nonlinear_ls,
    NonlinearLSResult,
    SingularNormalEquationsError,
)

__all__ = [
    "gauss_newton",
    "levenberg_marquardt",
    "solve_nonlinear_ls",
    "NonlinearLSResult",
    "SingularNormalEquationsError",
]
