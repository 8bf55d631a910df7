"""Radio source estimation from geolocated RSSI readings.

This package contains the components used to recover the parameters of a
single radio emitter (position, transmitted power, path-loss exponent):
- rf: Propagation model, parameter packing, solver adapter and estimator
- estimators: Nonlinear least squares engine (Gauss-Newton, Levenberg-Marquardt)
- utils: Geometry helpers and covariance accuracy
"""

__version__ = "0.1.0"
