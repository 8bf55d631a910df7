"""Data types for RSSI radio source estimation.

This module defines the radio source identity, the geolocated RSSI reading
consumed by the estimators, and the fit results they produce.
"""

import numbers
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from radiosource.rf.measurement_models import dbm_to_power
from radiosource.utils.geometry import DEFAULT_CONFIDENCE, Accuracy, position_accuracy


@dataclass(frozen=True)
class RadioSource:
    """Identity of a radio emitter (WiFi access point, BLE beacon, ...).

    The estimators treat the identity as opaque; only the frequency enters
    the propagation model.

    Attributes:
        source_id: Identifier of the source (BSSID, Bluetooth address, ...).
        frequency: Carrier frequency in Hz.
        kind: Source kind, e.g. 'wifi' or 'beacon'.
        meta: Optional metadata (SSID, beacon identifiers, manufacturer, ...).

    Example:
        >>> ap = RadioSource.wifi_access_point("00:11:22:33:44:55", 2.4e9, ssid="lab")
        >>> ap.kind
        'wifi'
    """

    source_id: str
    frequency: float
    kind: str = "wifi"
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.source_id, str) or not self.source_id:
            raise ValueError(f"source_id must be a non-empty string, got {self.source_id!r}")
        if not isinstance(self.frequency, numbers.Real):
            raise TypeError(f"Frequency must be numeric, got {type(self.frequency)}")
        if not self.frequency > 0:
            raise ValueError(f"Frequency must be positive, got {self.frequency}")
        object.__setattr__(self, "frequency", float(self.frequency))

    @classmethod
    def wifi_access_point(
        cls, bssid: str, frequency: float, ssid: Optional[str] = None
    ) -> "RadioSource":
        """Create a WiFi access point source."""
        meta = {"ssid": ssid} if ssid is not None else {}
        return cls(source_id=bssid, frequency=frequency, kind="wifi", meta=meta)

    @classmethod
    def beacon(
        cls,
        address: str,
        frequency: float = 2.4e9,
        identifiers: Optional[list] = None,
        name: Optional[str] = None,
    ) -> "RadioSource":
        """Create a Bluetooth beacon source."""
        meta: Dict[str, Any] = {}
        if identifiers is not None:
            meta["identifiers"] = list(identifiers)
        if name is not None:
            meta["name"] = name
        return cls(source_id=address, frequency=frequency, kind="beacon", meta=meta)


@dataclass(frozen=True)
class RssiReading:
    """RSSI reading of a radio source taken at a known reader position.

    Attributes:
        source: Radio source the reading belongs to.
        rssi: Received signal strength in dBm.
        position: Reader position, shape (2,) or (3,). Stored as a read-only copy.
        rssi_std: Optional RSSI standard deviation in dB. None means unknown
                  (unit weight in the fit).

    Example:
        >>> ap = RadioSource("ap-1", 2.4e9)
        >>> reading = RssiReading(ap, -62.5, np.array([1.0, 2.0]), rssi_std=1.5)
        >>> reading.dims
        2
    """

    source: RadioSource
    rssi: float
    position: np.ndarray
    rssi_std: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.source, RadioSource):
            raise TypeError(f"source must be a RadioSource, got {type(self.source)}")
        if not isinstance(self.rssi, numbers.Real) or not np.isfinite(self.rssi):
            raise ValueError(f"rssi must be a finite number, got {self.rssi!r}")
        object.__setattr__(self, "rssi", float(self.rssi))

        position = np.array(self.position, dtype=float)
        if position.ndim != 1 or len(position) not in (2, 3):
            raise ValueError(f"position must have shape (2,) or (3,), got {position.shape}")
        if not np.all(np.isfinite(position)):
            raise ValueError("position must be finite")
        position.setflags(write=False)
        object.__setattr__(self, "position", position)

        if self.rssi_std is not None and not self.rssi_std > 0:
            raise ValueError(f"rssi_std must be positive, got {self.rssi_std}")

    @property
    def frequency(self) -> float:
        return self.source.frequency

    @property
    def source_id(self) -> str:
        return self.source.source_id

    @property
    def dims(self) -> int:
        return len(self.position)

    @property
    def weight(self) -> float:
        """Least-squares weight 1/σ² (1.0 when no standard deviation is known)."""
        if self.rssi_std is None:
            return 1.0
        return 1.0 / self.rssi_std ** 2


@dataclass
class RadioSourceFit:
    """Result of a radio source fit.

    Quantities that were not estimated hold the initial value used during the
    fit and have no variance.

    Attributes:
        position: Estimated (or fixed) emitter position, shape (D,).
        transmitted_power_dbm: Estimated (or fixed) transmitted power in dBm.
        path_loss_exponent: Estimated (or fixed) path-loss exponent.
        covariance: Covariance of the estimated unknowns (U × U).
        chi_square: Weighted sum of squared residuals at the solution.
        position_covariance: D × D position block, or None.
        transmitted_power_variance: Transmitted power variance (dBm²), or None.
        path_loss_exponent_variance: Path-loss exponent variance, or None.
        iterations: Solver iterations.
        converged: Whether the solver met its tolerance.
    """

    position: np.ndarray
    transmitted_power_dbm: float
    path_loss_exponent: float
    covariance: Optional[np.ndarray]
    chi_square: float
    position_covariance: Optional[np.ndarray] = None
    transmitted_power_variance: Optional[float] = None
    path_loss_exponent_variance: Optional[float] = None
    iterations: int = 0
    converged: bool = True

    @property
    def transmitted_power(self) -> float:
        """Transmitted power in mW."""
        return dbm_to_power(self.transmitted_power_dbm)

    @property
    def transmitted_power_std(self) -> Optional[float]:
        if self.transmitted_power_variance is None:
            return None
        return float(np.sqrt(self.transmitted_power_variance))

    @property
    def path_loss_exponent_std(self) -> Optional[float]:
        if self.path_loss_exponent_variance is None:
            return None
        return float(np.sqrt(self.path_loss_exponent_variance))


@dataclass(frozen=True)
class LocatedRadioSource:
    """Radio source with its estimated location, power and path loss.

    Attributes:
        source: Identity of the radio source.
        position: Estimated position, shape (D,).
        transmitted_power_dbm: Transmitted power in dBm.
        path_loss_exponent: Path-loss exponent.
        position_covariance: Position covariance (D × D), or None.
        transmitted_power_std: Transmitted power standard deviation (dB), or None.
        path_loss_exponent_std: Path-loss exponent standard deviation, or None.
    """

    source: RadioSource
    position: np.ndarray
    transmitted_power_dbm: float
    path_loss_exponent: float
    position_covariance: Optional[np.ndarray] = None
    transmitted_power_std: Optional[float] = None
    path_loss_exponent_std: Optional[float] = None

    @property
    def frequency(self) -> float:
        return self.source.frequency

    @property
    def transmitted_power(self) -> float:
        return dbm_to_power(self.transmitted_power_dbm)

    def position_accuracy(self, confidence: float = DEFAULT_CONFIDENCE) -> Optional[Accuracy]:
        """Confidence region of the position, or None without a covariance."""
        if self.position_covariance is None:
            return None
        return position_accuracy(self.position_covariance, confidence)
