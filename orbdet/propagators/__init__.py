"""
Propagators Package
Contains integrator and termination settings, propagator settings, the variational
equations assembler and the dynamics / variational equations simulators.
"""
