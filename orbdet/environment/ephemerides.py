from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from orbdet.astro.element_conversions import keplerian_to_cartesian, propagate_kepler_orbit
from orbdet.environment.spice_manager import spice_manager


class Ephemeris(ABC):
    """
    Translational state of a body as a function of time, in the global inertial frame.
    """

    @abstractmethod
    def get_state(self, t: float) -> np.ndarray:
        """
        Args:
            t (float): Time [s].

        Returns:
            np.ndarray: State [x, y, z, vx, vy, vz] in km and km/s.
        """
        pass

    def get_position(self, t: float) -> np.ndarray:
        return self.get_state(t)[0:3]


class ConstantEphemeris(Ephemeris):
    """
    Body at a fixed state (by default the origin at rest).
    """
    def __init__(self, state: Optional[np.ndarray] = None):
        self.state = np.zeros(6) if state is None else np.asarray(state, dtype=float).copy()

    def get_state(self, t: float) -> np.ndarray:
        return self.state.copy()


class KeplerEphemeris(Ephemeris):
    """
    Two-body motion of a body about a central ephemeris.

    Args:
        keplerian_elements (np.ndarray): Elements [a, e, i, omega, RAAN, nu] at the epoch.
        epoch (float): Epoch of the elements [s].
        mu (float): Gravitational parameter of the central body [km^3/s^2].
        central_ephemeris (Ephemeris): Ephemeris the orbit is relative to (origin if None).
    """
    def __init__(self, keplerian_elements: np.ndarray, epoch: float, mu: float,
                 central_ephemeris: Optional[Ephemeris] = None):
        self.keplerian_elements = np.asarray(keplerian_elements, dtype=float)
        self.epoch = epoch
        self.mu = mu
        self.central_ephemeris = central_ephemeris

    def get_state(self, t: float) -> np.ndarray:
        elements = propagate_kepler_orbit(self.keplerian_elements, t - self.epoch, self.mu)
        state = keplerian_to_cartesian(elements, self.mu)
        if self.central_ephemeris is not None:
            state = state + self.central_ephemeris.get_state(t)
        return state


class TabulatedEphemeris(Ephemeris):
    """
    Ephemeris interpolated from a propagated state history.

    Args:
        interpolator (Callable): Function t -> state (6,) relative to the origin.
        origin (Ephemeris): Ephemeris of the frame origin the history is expressed in
                            (global origin if None).
    """
    def __init__(self, interpolator: Callable[[float], np.ndarray], origin: Optional[Ephemeris] = None):
        self.interpolator = interpolator
        self.origin = origin

    def get_state(self, t: float) -> np.ndarray:
        state = np.asarray(self.interpolator(t), dtype=float).copy()
        if self.origin is not None:
            state += self.origin.get_state(t)
        return state


class SpiceEphemeris(Ephemeris):
    """
    Ephemeris read from the loaded SPICE kernels.

    Args:
        target (str): SPICE name of the body.
        observer (str): SPICE name of the global frame origin.
        frame (str): Global inertial frame.
    """
    def __init__(self, target: str, observer: str = 'SSB', frame: str = 'J2000'):
        self.target = target
        self.observer = observer
        self.frame = frame

    def get_state(self, t: float) -> np.ndarray:
        return spice_manager.get_body_state(self.target, self.observer, t, self.frame)
