"""
Astrodynamics Utilities Package
Contains element conversions (Cartesian, Keplerian, unified state model with quaternions),
Kepler's equation and quaternion/attitude helpers.
"""
