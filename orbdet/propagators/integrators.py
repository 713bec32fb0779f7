"""
Step-wise numerical integration with termination checks after every accepted step.

Variable-step methods use the scipy.integrate OdeSolver classes directly (instead of
solve_ivp) so that arbitrary stopping conditions can be evaluated on the accepted steps;
their step interpolants are assembled into an OdeSolution. The fixed-step RK4 method uses a
cubic Hermite spline through the step points as dense output.
"""
from typing import Callable

import numpy as np
import scipy.integrate
from scipy.integrate import OdeSolution
from scipy.interpolate import CubicHermiteSpline

from orbdet.errors import PropagationError
from orbdet.propagators.settings import IntegratorSettings

# Fraction of the RK4 step within which the remaining time is merged into the last step
RK4_BOUND_SNAP_TOLERANCE = 1e-9


class IntegrationResult:
    """
    Accepted integration steps.

    Attributes:
        times (np.ndarray): Step times, in the order of integration (shape (N,)).
        states (np.ndarray): States at the step times (shape (N, m)).
        dense_output (Callable): t -> state (m,), valid within the integrated interval.
        terminated (bool): True if a stopping condition (rather than the time bound) ended the run.
    """
    def __init__(self, times: np.ndarray, states: np.ndarray, dense_output: Callable, terminated: bool):
        self.times = times
        self.states = states
        self.dense_output = dense_output
        self.terminated = terminated


def _constant_output(y0: np.ndarray) -> Callable:
    return lambda t: y0.copy()


def _integrate_scipy(fun, t0, y0, t_bound, settings: IntegratorSettings, is_terminated) -> IntegrationResult:
    solver_type = getattr(scipy.integrate, settings.method)
    solver = solver_type(fun, t0, y0, t_bound, rtol=settings.rtol, atol=settings.atol,
                         max_step=settings.max_step, first_step=settings.step_size)

    times = [t0]
    states = [np.array(y0, dtype=float)]
    interpolants = []
    terminated = False

    while solver.status == 'running':
        message = solver.step()
        if solver.status == 'failed':
            raise PropagationError(f"Integration with {settings.method} failed at t={solver.t}: {message}")

        times.append(solver.t)
        states.append(solver.y.copy())
        interpolants.append(solver.dense_output())

        if is_terminated(solver.t, solver.y):
            terminated = solver.status != 'finished'
            break

    if not interpolants:
        return IntegrationResult(np.array(times), np.array(states), _constant_output(states[0]), terminated)

    solution = OdeSolution(times, interpolants)
    return IntegrationResult(np.array(times), np.array(states), solution, terminated)


def _rk4_step(fun, t, y, h, k1):
    k2 = fun(t + 0.5 * h, y + 0.5 * h * k1)
    k3 = fun(t + 0.5 * h, y + 0.5 * h * k2)
    k4 = fun(t + h, y + h * k3)
    return y + h / 6.0 * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def _integrate_rk4(fun, t0, y0, t_bound, settings: IntegratorSettings, is_terminated) -> IntegrationResult:
    direction = 1.0 if t_bound >= t0 else -1.0
    step = direction * settings.step_size

    t = t0
    y = np.array(y0, dtype=float)
    k1 = np.asarray(fun(t, y), dtype=float)

    times = [t]
    states = [y.copy()]
    derivatives = [k1.copy()]
    terminated = False

    while direction * (t_bound - t) > 0.0:
        # Last step ends exactly on the time bound, also when round-off leaves it a hair beyond one step
        last_step = direction * (t + step - t_bound) > -RK4_BOUND_SNAP_TOLERANCE * abs(step)
        h = t_bound - t if last_step else step
        y = _rk4_step(fun, t, y, h, k1)
        t = t_bound if last_step else t + h
        if not np.all(np.isfinite(y)):
            raise PropagationError(f"Integration with RK4 produced non-finite states at t={t}.")
        k1 = np.asarray(fun(t, y), dtype=float)

        times.append(t)
        states.append(y.copy())
        derivatives.append(k1.copy())

        if is_terminated(t, y):
            terminated = direction * (t_bound - t) > 0.0
            break

    times = np.array(times)
    states = np.array(states)
    if len(times) < 2:
        return IntegrationResult(times, states, _constant_output(states[0]), terminated)

    order = np.argsort(times)
    spline = CubicHermiteSpline(times[order], states[order], np.array(derivatives)[order], axis=0)
    return IntegrationResult(times, states, spline, terminated)


def integrate(fun: Callable[[float, np.ndarray], np.ndarray], y0: np.ndarray, t_bound: float,
              settings: IntegratorSettings,
              is_terminated: Callable[[float, np.ndarray], bool] = lambda t, y: False) -> IntegrationResult:
    """
    Integrates dy/dt = fun(t, y) from settings.initial_time towards t_bound.

    Args:
        fun (Callable): Right-hand side.
        y0 (np.ndarray): Initial state.
        t_bound (float): Time bound (may be +/- inf if a stopping condition ends the run).
        settings (IntegratorSettings): Integrator settings.
        is_terminated (Callable): Stopping condition, checked after every accepted step.

    Returns:
        IntegrationResult: Accepted steps and dense output.
    """
    t0 = settings.initial_time
    y0 = np.asarray(y0, dtype=float)
    if t_bound == t0:
        return IntegrationResult(np.array([t0]), y0[np.newaxis, :].copy(), _constant_output(y0), False)

    if settings.is_fixed_step:
        return _integrate_rk4(fun, t0, y0, t_bound, settings, is_terminated)
    return _integrate_scipy(fun, t0, y0, t_bound, settings, is_terminated)
