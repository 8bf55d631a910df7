"""
Nonlinear Least Squares solver using Gauss-Newton and Levenberg-Marquardt.

This module implements the iterative optimization engine used to fit
measurement models such as the RSSI log-distance propagation model.

Mathematical Formulation:
    Given observations y and measurement model h(x), we seek:
        x̂ = argmin ½‖r(x)‖²_W
    where r(x) = y - h(x) is the residual vector.

    Gauss-Newton update:
        (J'WJ) Δx = J'W r  →  x ← x + Δx

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r
    where μ is an adaptive damping parameter.

    Covariance at the solution:
        P = σ̂² (J'WJ)⁻¹,   σ̂² = χ² / (m - n),   χ² = r'Wr
"""

from dataclasses import dataclass
from typing import Callable, Literal, Optional

import numpy as np

# Normal matrices with a larger condition number are treated as rank deficient
DEFAULT_CONDITION_THRESHOLD = 1e12

# A stalled LM run counts as converged only if the undamped step predicts a
# cost decrease below this fraction of max(cost, 1)
STALL_DECREASE_RTOL = np.sqrt(np.finfo(float).eps)


class SingularNormalEquationsError(np.linalg.LinAlgError):
    """Normal-equations matrix J'WJ is singular or not positive definite."""


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated state vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        chi_square: Final weighted sum of squared residuals r'Wr.
        converged: Whether the solver converged within tolerance.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    chi_square: float
    converged: bool


def gauss_newton(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 20,
    tol: float = 1e-8,
    return_covariance: bool = True,
    raise_on_singular: bool = False,
) -> NonlinearLSResult:
    """
    Gauss-Newton solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    Args:
        h: Measurement model function h: R^n → R^m.
            Returns predicted measurements given state x.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial state estimate (n,).
        weights: Optional measurement weights (m,) for weighted LS.
            If None, uses uniform weights (standard LS).
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        return_covariance: If True, compute covariance at final estimate.
        raise_on_singular: If True, raise SingularNormalEquationsError when
            J'WJ is singular instead of falling back to a pseudo-inverse.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Example:
        >>> import numpy as np
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]])
        >>> def h(x):
        ...     return np.linalg.norm(anchors - x, axis=1)
        >>> def jac(x):
        ...     diff = x - anchors
        ...     ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        ...     return diff / np.maximum(ranges, 1e-10)
        >>> y = h(np.array([3.0, 4.0]))
        >>> result = gauss_newton(h, jac, y, x0=np.array([5.0, 5.0]))
        >>> print(f"Estimate: {result.x}, Iterations: {result.iterations}")
    """
    return _solve_nonlinear_ls(
        h=h,
        jacobian=jacobian,
        y=y,
        x0=x0,
        weights=weights,
        method="gn",
        max_iter=max_iter,
        tol=tol,
        return_covariance=return_covariance,
        raise_on_singular=raise_on_singular,
    )


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    raise_on_singular: bool = False,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    LM combines Gauss-Newton (fast near solution) with gradient descent
    (robust far from solution) by adaptively adjusting μ:
        - Small μ: Gauss-Newton behavior (quadratic convergence)
        - Large μ: Gradient descent behavior (global convergence)

    The damping is updated from the gain ratio between the actual and the
    predicted cost decrease of each trial step.

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial state estimate (n,).
        weights: Optional measurement weights (m,) for weighted LS.
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        mu0: Initial damping parameter (default 1e-3).
        return_covariance: If True, compute covariance at final estimate.
        raise_on_singular: If True, raise SingularNormalEquationsError when
            the undamped J'WJ at the solution is rank deficient.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.
    """
    return _solve_nonlinear_ls(
        h=h,
        jacobian=jacobian,
        y=y,
        x0=x0,
        weights=weights,
        method="lm",
        max_iter=max_iter,
        tol=tol,
        mu0=mu0,
        return_covariance=return_covariance,
        raise_on_singular=raise_on_singular,
    )


def _check_normal_matrix(JtWJ: np.ndarray, cond_threshold: float) -> None:
    """Raise SingularNormalEquationsError unless J'WJ is positive definite."""
    if not np.all(np.isfinite(JtWJ)):
        raise SingularNormalEquationsError("Normal matrix contains non-finite values")
    try:
        np.linalg.cholesky(JtWJ)
    except np.linalg.LinAlgError as e:
        raise SingularNormalEquationsError(
            f"Normal matrix is not positive definite: {e}"
        ) from e
    cond = np.linalg.cond(JtWJ)
    if not np.isfinite(cond) or cond > cond_threshold:
        raise SingularNormalEquationsError(
            f"Normal matrix is rank deficient (condition number {cond:.3e})"
        )


def _solve_nonlinear_ls(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray],
    method: str,
    max_iter: int,
    tol: float,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    raise_on_singular: bool = False,
    cond_threshold: float = DEFAULT_CONDITION_THRESHOLD,
) -> NonlinearLSResult:
    """Internal solver implementing both Gauss-Newton and Levenberg-Marquardt."""
    # Input validation
    y = np.asarray(y, dtype=float)
    x0 = np.asarray(x0, dtype=float)

    if y.ndim != 1:
        raise ValueError(f"y must be 1D array, got shape {y.shape}")
    if x0.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x0.shape}")

    m = len(y)
    n = len(x0)
    x = x0.copy()

    # Setup weight matrix
    if weights is None:
        W = np.eye(m)
    else:
        weights = np.asarray(weights, dtype=float)
        if weights.ndim != 1 or len(weights) != m:
            raise ValueError(f"weights must be 1D array of length {m}")
        if np.any(weights < 0):
            raise ValueError("weights must be non-negative")
        W = np.diag(weights)

    # LM-specific initialization
    mu = mu0
    nu = 2.0

    converged = False
    stalled = False
    iteration = 0

    for iteration in range(max_iter):
        # Evaluate model and Jacobian
        hx = h(x)
        if len(hx) != m:
            raise ValueError(f"h(x) returned {len(hx)} elements, expected {m}")

        J = jacobian(x)
        if J.shape != (m, n):
            raise ValueError(f"Jacobian shape {J.shape}, expected ({m}, {n})")

        # Residual: r = y - h(x)
        r = y - hx

        # Weighted normal equations: (J'WJ) Δx = J'Wr
        JtW = J.T @ W
        JtWJ = JtW @ J
        JtWr = JtW @ r

        # Cost function: f = ½ r'Wr
        cost = 0.5 * r @ W @ r

        if method == "gn":
            # Gauss-Newton: solve (J'WJ) Δx = J'Wr
            if raise_on_singular:
                _check_normal_matrix(JtWJ, cond_threshold)
                delta_x = np.linalg.solve(JtWJ, JtWr)
            else:
                try:
                    delta_x = np.linalg.solve(JtWJ, JtWr)
                except np.linalg.LinAlgError:
                    # Singular - use pseudo-inverse
                    delta_x = np.linalg.lstsq(JtWJ, JtWr, rcond=None)[0]

            x = x + delta_x

        elif method == "lm":
            # Levenberg-Marquardt: solve (J'WJ + μI) Δx = J'Wr
            while True:
                # Add damping
                JtWJ_damped = JtWJ + mu * np.eye(n)

                try:
                    delta_x = np.linalg.solve(JtWJ_damped, JtWr)
                except np.linalg.LinAlgError:
                    delta_x = np.linalg.lstsq(JtWJ_damped, JtWr, rcond=None)[0]

                # Evaluate new cost
                x_new = x + delta_x
                r_new = y - h(x_new)
                cost_new = 0.5 * r_new @ W @ r_new

                # Predicted decrease: ½ Δx'(μΔx + J'Wr)
                predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
                actual_decrease = cost - cost_new

                if predicted_decrease > 1e-15 and np.isfinite(cost_new):
                    gain_ratio = actual_decrease / predicted_decrease
                else:
                    gain_ratio = 0.0

                if gain_ratio > 0:
                    # Accept step
                    x = x_new
                    # Decrease damping (more GN-like)
                    mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                    nu = 2.0
                    break
                else:
                    # Reject step, increase damping (more GD-like)
                    mu = mu * nu
                    nu = 2.0 * nu

                    # Prevent infinite loop with very large damping
                    if mu > 1e10:
                        stalled = True
                        break

        else:
            raise ValueError(f"Unknown method: {method}. Use 'gn' or 'lm'.")

        if stalled:
            # No damped step lowers the cost: converged only at a stationary point
            gn_step = np.linalg.lstsq(JtWJ, JtWr, rcond=None)[0]
            gn_decrease = 0.5 * JtWr @ gn_step
            converged = bool(gn_decrease <= STALL_DECREASE_RTOL * max(cost, 1.0))
            break

        # Check convergence
        step_norm = np.linalg.norm(delta_x)
        if step_norm < tol:
            converged = True
            break

    # Final evaluation
    hx = h(x)
    r = y - hx
    chi_square = float(r @ W @ r)
    cost = 0.5 * chi_square

    J = jacobian(x)
    JtWJ = J.T @ W @ J
    if raise_on_singular:
        _check_normal_matrix(JtWJ, cond_threshold)

    # Covariance estimation
    P = None
    if return_covariance:
        # Estimate residual variance
        if m > n:
            sigma2 = chi_square / (m - n)
        else:
            sigma2 = 1.0

        try:
            P = sigma2 * np.linalg.inv(JtWJ)
        except np.linalg.LinAlgError:
            P = sigma2 * np.linalg.pinv(JtWJ)

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration + 1,
        residuals=r,
        cost=cost,
        chi_square=chi_square,
        converged=converged,
    )


# Convenience function dispatching on the method name
def solve_nonlinear_ls(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    method: Literal["gn", "lm"] = "gn",
    max_iter: int = 30,
    tol: float = 1e-8,
    return_covariance: bool = True,
    raise_on_singular: bool = False,
    **kwargs,
) -> NonlinearLSResult:
    """
    General nonlinear least squares solver.

    Dispatches to gauss_newton() or levenberg_marquardt().

    Args:
        h: Measurement model h(x) returning predicted observations.
        jacobian: Jacobian function J = ∂h/∂x.
        y: Observations (m,).
        x0: Initial state estimate (n,).
        weights: Optional measurement weights for WLS (m,).
        method: Optimization method - "gn" (Gauss-Newton) or "lm" (Levenberg-Marquardt).
        max_iter: Maximum iterations.
        tol: Convergence tolerance.
        return_covariance: If True, compute covariance at solution.
        raise_on_singular: If True, singular normal equations raise
            SingularNormalEquationsError.
        **kwargs: Additional arguments passed to the solver (e.g., mu0 for LM).

    Returns:
        NonlinearLSResult with solution, covariance, and diagnostics.
    """
    if method == "gn":
        return gauss_newton(
            h=h,
            jacobian=jacobian,
            y=y,
            x0=x0,
            weights=weights,
            max_iter=max_iter,
            tol=tol,
            return_covariance=return_covariance,
            raise_on_singular=raise_on_singular,
        )
    elif method == "lm":
        mu0 = kwargs.get("mu0", 1e-3)
        return levenberg_marquardt(
            h=h,
            jacobian=jacobian,
            y=y,
            x0=x0,
            weights=weights,
            max_iter=max_iter,
            tol=tol,
            mu0=mu0,
            return_covariance=return_covariance,
            raise_on_singular=raise_on_singular,
        )
    else:
        raise ValueError(f"Unknown method: {method}. Use 'gn' or 'lm'.")
