"""
State Derivative Partials Package
Contains the partial derivatives of acceleration and torque models w.r.t. body states
and estimated parameters, used to assemble the variational equations.
"""
