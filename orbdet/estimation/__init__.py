"""
Estimation Package
Contains estimatable parameters, observation models and simulators, observation partials,
convergence checking and the batch least-squares orbit determination manager.
"""
