"""
RF (Radio Frequency) radio source estimation module.

This module implements the RSSI propagation model and the estimator that
recovers a radio emitter's position, transmitted power and path-loss exponent
from geolocated RSSI readings.

Submodules:
    measurement_models: Log-distance path-loss model, unit and variance helpers
    types: Radio source, reading and fit result types
    packing: Mapping between physical unknowns and the parameter vector
    model: Propagation model with analytic Jacobian over a set of readings
    fitting: Nonlinear least-squares adapter
    config: Solver and estimator configuration
    source_estimator: Stateful RSSI radio source estimator
"""

from radiosource.rf.config import EstimatorConfig, SolverOptions
from radiosource.rf.fitting import fit_radio_source
from radiosource.rf.measurement_models import (
    DEFAULT_PATH_LOSS_EXPONENT,
    SPEED_OF_LIGHT,
    dbm_to_power,
    path_loss_constant,
    power_to_dbm,
    propagate_rssi_variance_to_distance_variance,
    propagate_variances_to_distance_variance,
    received_power,
    rss_pathloss,
    rss_to_distance,
    simulate_rss_measurement,
    wavelength_db,
)
from radiosource.rf.model import RssiPropagationModel
from radiosource.rf.packing import (
    DEFAULT_TRANSMITTED_POWER_DBM,
    ParameterLayout,
    build_initial_vector,
    unpack,
)
from radiosource.rf.source_estimator import (
    RadioSourceEstimatorListener,
    RssiRadioSourceEstimator,
    RssiRadioSourceEstimator2D,
    RssiRadioSourceEstimator3D,
)
from radiosource.rf.types import LocatedRadioSource, RadioSource, RadioSourceFit, RssiReading

__all__ = [
    # Constants
    "SPEED_OF_LIGHT",
    "DEFAULT_PATH_LOSS_EXPONENT",
    "DEFAULT_TRANSMITTED_POWER_DBM",
    # Unit conversion
    "dbm_to_power",
    "power_to_dbm",
    # Measurement models
    "wavelength_db",
    "path_loss_constant",
    "received_power",
    "rss_pathloss",
    "rss_to_distance",
    "propagate_rssi_variance_to_distance_variance",
    "propagate_variances_to_distance_variance",
    "simulate_rss_measurement",
    # Types
    "RadioSource",
    "RssiReading",
    "RadioSourceFit",
    "LocatedRadioSource",
    # Packing, model and fitting
    "ParameterLayout",
    "build_initial_vector",
    "unpack",
    "RssiPropagationModel",
    "fit_radio_source",
    # Configuration
    "SolverOptions",
    "EstimatorConfig",
    # Estimators
    "RadioSourceEstimatorListener",
    "RssiRadioSourceEstimator",
    "RssiRadioSourceEstimator2D",
    "RssiRadioSourceEstimator3D",
]
