"""
RSSI measurement models for radio source estimation.

This module implements the log-distance (Friis-based) propagation model that
relates the equivalent transmitted power of a radio source, the path-loss
exponent of the environment and the carrier frequency to the received
signal strength at a given distance:

    Pr = Pte · k / d^n,    k = (c / (4π f))^n

or, in dBm,

    Pr(dBm) = Pte(dBm) + 10·n·log10(c / (4π f)) - 10·n·log10(d)

where Pte = Pt·Gt·Gr is the equivalent transmitted power (mW), d the
reader-emitter distance (m), n the path-loss exponent and f the frequency (Hz).
"""

from typing import Optional, Tuple

import numpy as np

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

# Free-space path-loss exponent
DEFAULT_PATH_LOSS_EXPONENT = 2.0


# =============================================================================
# Power Unit Conversion Utilities
# =============================================================================
def dbm_to_power(dbm: float) -> float:
    """
    Convert power from dBm to milliwatts.

    Args:
        dbm: Power in dBm (decibels relative to 1 mW).

    Returns:
        Power in mW: 10^(dBm / 10).

    Example:
        >>> dbm_to_power(0.0)
        1.0
        >>> dbm_to_power(20.0)
        100.0
    """
    return 10.0 ** (dbm / 10.0)


def power_to_dbm(mw: float) -> float:
    """
    Convert power from milliwatts to dBm.

    Args:
        mw: Power in mW. Must be positive.

    Returns:
        Power in dBm: 10·log10(mW).

    Raises:
        ValueError: If mw is not positive.
    """
    if mw <= 0:
        raise ValueError(f"Power must be positive, got {mw}")
    return 10.0 * np.log10(mw)


# =============================================================================
# Log-Distance Propagation Model
# =============================================================================
def wavelength_db(frequency: float) -> float:
    """
    Return 10·log10(c / (4π f)), the frequency term of the model in dB.

    Args:
        frequency: Carrier frequency in Hz.

    Returns:
        Frequency term in dB (negative for any radio frequency above ~24 MHz).
    """
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    return 10.0 * np.log10(SPEED_OF_LIGHT / (4.0 * np.pi * frequency))


def path_loss_constant(
    frequency: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Compute the constant part of the received power formula.

    k = (c / (4π f))^n, so that Pr = Pte · k / d^n.

    Args:
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n. Defaults to 2.0 (free space).

    Returns:
        Constant k (dimensionless, in m^n).
    """
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    return (SPEED_OF_LIGHT / (4.0 * np.pi * frequency)) ** path_loss_exp


def received_power(
    tx_power: float,
    distance: float,
    frequency: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Compute received power in mW.

    Implements Pr = Pte · k / d^n.

    Args:
        tx_power: Equivalent transmitted power Pte in mW.
        distance: Reader-emitter distance in meters.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n. Defaults to 2.0.

    Returns:
        Received power in mW.

    Example:
        >>> # 1 mW source at 2.4 GHz, 10 m away in free space
        >>> pr = received_power(1.0, 10.0, 2.4e9)
        >>> print(f"{power_to_dbm(pr):.2f} dBm")
        -60.05 dBm
    """
    if distance <= 0:
        raise ValueError("Distance must be positive")
    k = path_loss_constant(frequency, path_loss_exp)
    return tx_power * k / distance ** path_loss_exp


def rss_pathloss(
    tx_power_dbm: float,
    distance: float,
    frequency: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Compute RSSI in dBm using the log-distance path-loss model.

    Pr(dBm) = Pte(dBm) + 10·n·log10(c/(4πf)) - 10·n·log10(d)

    Args:
        tx_power_dbm: Equivalent transmitted power in dBm.
        distance: Reader-emitter distance in meters.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n. Defaults to 2.0 (free space).
                      Typical indoor values: 1.6-4.0.

    Returns:
        Received signal strength in dBm.
    """
    if distance <= 0:
        raise ValueError("Distance must be positive")

    return tx_power_dbm + path_loss_exp * (
        wavelength_db(frequency) - 10.0 * np.log10(distance)
    )


def rss_to_distance(
    rssi_dbm: float,
    tx_power_dbm: float,
    frequency: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Estimate distance from RSSI by inverting the log-distance model.

    d = 10^((Pte(dBm) + n·kdB - Pr(dBm)) / (10·n)),  kdB = 10·log10(c/(4πf))

    Args:
        rssi_dbm: Received signal strength in dBm.
        tx_power_dbm: Equivalent transmitted power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n. Defaults to 2.0.

    Returns:
        Estimated distance in meters.
    """
    if path_loss_exp <= 0:
        raise ValueError(f"Path-loss exponent must be positive, got {path_loss_exp}")
    exponent = (
        tx_power_dbm + path_loss_exp * wavelength_db(frequency) - rssi_dbm
    ) / (10.0 * path_loss_exp)
    return 10.0 ** exponent


# =============================================================================
# Variance Propagation
# =============================================================================
def propagate_rssi_variance_to_distance_variance(
    tx_power_dbm: float,
    rssi_dbm: float,
    frequency: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    rssi_variance: Optional[float] = None,
) -> float:
    """
    Propagate RSSI variance into distance variance (first order).

    Uses ∂d/∂Pr = -ln(10) / (10·n) · d.

    Args:
        tx_power_dbm: Equivalent transmitted power in dBm.
        rssi_dbm: Received signal strength in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n.
        rssi_variance: RSSI variance in dBm². None means no uncertainty.

    Returns:
        Distance variance in m² (0.0 if rssi_variance is None).
    """
    if rssi_variance is None:
        return 0.0

    distance = rss_to_distance(rssi_dbm, tx_power_dbm, frequency, path_loss_exp)
    derivative = -np.log(10.0) / (10.0 * path_loss_exp) * distance
    return derivative ** 2 * rssi_variance


def propagate_variances_to_distance_variance(
    tx_power_dbm: float,
    rssi_dbm: float,
    frequency: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    tx_power_variance: Optional[float] = None,
    rssi_variance: Optional[float] = None,
    path_loss_exp_variance: Optional[float] = None,
) -> Optional[Tuple[float, float]]:
    """
    Propagate transmitted power, RSSI and path-loss variances into distance.

    The three inputs are treated as independent, so the first-order distance
    variance is  σ_d² = Σ (∂d/∂θ_i)² σ_i²  with

        d = 10^g,  g = (n·kdB + Pte - Pr) / (10·n)
        ∂d/∂Pte =  ln(10)/(10·n) · d
        ∂d/∂Pr  = -ln(10)/(10·n) · d
        ∂d/∂n   = -ln(10) · (Pte - Pr)/(10·n²) · d

    Args:
        tx_power_dbm: Equivalent transmitted power in dBm.
        rssi_dbm: Received signal strength in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n.
        tx_power_variance: Transmitted power variance (dBm²) or None.
        rssi_variance: RSSI variance (dBm²) or None.
        path_loss_exp_variance: Path-loss exponent variance or None.

    Returns:
        Tuple of (distance, distance_variance), or None when no variance is given.
    """
    if tx_power_variance is None and rssi_variance is None and path_loss_exp_variance is None:
        return None

    distance = rss_to_distance(rssi_dbm, tx_power_dbm, frequency, path_loss_exp)
    ten_n = 10.0 * path_loss_exp
    ln10 = np.log(10.0)

    jac = np.array([
        ln10 / ten_n * distance,
        -ln10 / ten_n * distance,
        -ln10 * (tx_power_dbm - rssi_dbm) / (ten_n * path_loss_exp) * distance,
    ])
    variances = np.array([
        tx_power_variance if tx_power_variance is not None else 0.0,
        rssi_variance if rssi_variance is not None else 0.0,
        path_loss_exp_variance if path_loss_exp_variance is not None else 0.0,
    ])

    return distance, float(jac ** 2 @ variances)


# =============================================================================
# Simulation
# =============================================================================
def simulate_rss_measurement(
    source_pos: np.ndarray,
    reader_pos: np.ndarray,
    tx_power_dbm: float,
    frequency: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    sigma_db: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[float, dict]:
    """
    Simulate an RSSI reading with Gaussian shadowing in dB.

        p̃ = Pr(dBm) + ω,   ω ~ N(0, σ_db²)

    Args:
        source_pos: Emitter position, shape (d,).
        reader_pos: Reader position, shape (d,).
        tx_power_dbm: Equivalent transmitted power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n.
        sigma_db: Shadowing standard deviation in dB. 0 gives exact readings.
        rng: Optional numpy Generator (defaults to a fresh default_rng()).

    Returns:
        rssi_dbm: Simulated RSSI in dBm.
        info: Dictionary with 'distance', 'rssi_true' and 'noise_db'.
    """
    if sigma_db < 0:
        raise ValueError(f"sigma_db must be non-negative, got {sigma_db}")

    distance = float(np.linalg.norm(np.asarray(source_pos, dtype=float)
                                    - np.asarray(reader_pos, dtype=float)))
    rssi_true = rss_pathloss(tx_power_dbm, distance, frequency, path_loss_exp)

    noise_db = 0.0
    if sigma_db > 0:
        if rng is None:
            rng = np.random.default_rng()
        noise_db = float(rng.normal(0.0, sigma_db))

    info = {
        "distance": distance,
        "rssi_true": rssi_true,
        "noise_db": noise_db,
    }
    return rssi_true + noise_db, info
