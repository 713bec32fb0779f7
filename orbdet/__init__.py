"""
Orbit Determination Toolkit
Contains tools for spacecraft orbit and attitude determination, including:
- State representations (Cartesian, Keplerian, unified state model) and quaternion utilities
- Environment models (bodies, ephemerides, rotation models, SPICE access)
- Translational and rotational dynamics with pluggable acceleration and torque models
- Variational equations (state transition and sensitivity matrices)
- Observation simulation and batch least-squares estimation
"""

__version__ = "0.1.0"
