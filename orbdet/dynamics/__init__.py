"""
Dynamics Package
Contains dynamical state types, acceleration and torque models, and the state
derivative models for translational and rotational motion.
"""
