"""
Chapter 4: RF Point Positioning Examples.

This module provides example scripts for locating radio emitters from
RSSI readings taken at known positions.

Examples:
    - 2D/3D radio source estimation (position and transmitted power)
    - Joint path-loss exponent estimation
    - Monte Carlo study of position error under shadowing
"""

__version__ = "1.0.0"
