"""
Observation models: link ends, observable types and the models computing observables and
their partials w.r.t. the link-end positions.
"""
import warnings
from enum import Enum
from typing import Dict, NamedTuple

import numpy as np

from orbdet.environment.bodies import Environment
from orbdet.errors import ConfigurationError

SPEED_OF_LIGHT = 299792.458  # km/s


class LinkEndType(Enum):
    TRANSMITTER = "transmitter"
    RECEIVER = "receiver"
    OBSERVED_BODY = "observed_body"


class LinkEndId(NamedTuple):
    """A link end: a body, or a ground station on a body."""
    body: str
    station: str = ''

    def __str__(self):
        return f"{self.body}/{self.station}" if self.station else self.body


class LinkEnds:
    """
    Immutable, hashable mapping from link end type to link end.

    Example:
        LinkEnds({LinkEndType.TRANSMITTER: LinkEndId('Earth', 'DSS-14'),
                  LinkEndType.RECEIVER: LinkEndId('Spacecraft')})
    """
    def __init__(self, link_ends: Dict[LinkEndType, LinkEndId]):
        entries = {}
        for link_end_type, link_end in link_ends.items():
            if not isinstance(link_end, LinkEndId):
                link_end = LinkEndId(*link_end) if isinstance(link_end, tuple) else LinkEndId(link_end)
            entries[link_end_type] = link_end
        self._entries = entries
        self._key = frozenset(entries.items())

    def __getitem__(self, link_end_type: LinkEndType) -> LinkEndId:
        return self._entries[link_end_type]

    def __contains__(self, link_end_type: LinkEndType) -> bool:
        return link_end_type in self._entries

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)

    def items(self):
        return self._entries.items()

    def __eq__(self, other):
        return isinstance(other, LinkEnds) and self._key == other._key

    def __hash__(self):
        return hash(self._key)

    def __repr__(self):
        content = ", ".join(f"{t.value}: {e}" for t, e in self._entries.items())
        return f"LinkEnds({content})"


class ObservableType(Enum):
    ONE_WAY_RANGE = "one_way_range"
    POSITION_OBSERVABLE = "position_observable"

    @property
    def size(self) -> int:
        """Number of entries of a single observation."""
        return 3 if self == ObservableType.POSITION_OBSERVABLE else 1


_REQUIRED_LINK_ENDS = {
    ObservableType.ONE_WAY_RANGE: (LinkEndType.TRANSMITTER, LinkEndType.RECEIVER),
    ObservableType.POSITION_OBSERVABLE: (LinkEndType.OBSERVED_BODY,),
}


class ObservationSettings:
    """
    Settings of one observation model.

    Args:
        observable_type (ObservableType): Observable.
        link_ends (LinkEnds): Link ends of the observable.
        light_time_tolerance (float): Convergence tolerance of the light-time iteration [s].
        maximum_light_time_iterations (int): Iteration limit of the light-time solution.
    """
    def __init__(self, observable_type: ObservableType, link_ends: LinkEnds,
                 light_time_tolerance: float = 1e-12, maximum_light_time_iterations: int = 20):
        for link_end_type in _REQUIRED_LINK_ENDS[observable_type]:
            if link_end_type not in link_ends:
                raise ConfigurationError(
                    f"{observable_type.value} observations require a {link_end_type.value} link end.")
        self.observable_type = observable_type
        self.link_ends = link_ends
        self.light_time_tolerance = light_time_tolerance
        self.maximum_light_time_iterations = maximum_light_time_iterations


class ObservationResult(NamedTuple):
    """
    Observable value at one epoch, with the link-end times and states used, and the partial
    derivatives of the observable w.r.t. each link-end position (shape (size, 3)).
    """
    value: np.ndarray
    link_end_times: Dict[LinkEndType, float]
    link_end_states: Dict[LinkEndType, np.ndarray]
    position_partials: Dict[LinkEndType, np.ndarray]


class ObservationModel:
    """
    Base class of the observation models. Models read link-end states from the environment
    models (ephemerides, rotation models) at the link-end times and keep no state between calls.
    """
    observable_type: ObservableType = None

    def __init__(self, settings: ObservationSettings, environment: Environment):
        if settings.observable_type != self.observable_type:
            raise ConfigurationError(
                f"{type(self).__name__} cannot be created from {settings.observable_type.value} settings.")
        self.settings = settings
        self.link_ends = settings.link_ends
        self.environment = environment
        for _, link_end in self.link_ends.items():
            body = environment.get_body(link_end.body)
            if link_end.station:
                body.get_ground_station(link_end.station)

    @property
    def observable_size(self) -> int:
        return self.observable_type.size

    def link_end_state(self, link_end_type: LinkEndType, t: float) -> np.ndarray:
        link_end = self.link_ends[link_end_type]
        return self.environment.get_body(link_end.body).station_state(link_end.station, t)

    def compute(self, t: float, reference_link_end: LinkEndType) -> ObservationResult:
        raise NotImplementedError


class OneWayRangeModel(ObservationModel):
    """
    One-way range |r_R(t_R) - r_T(t_T)| with t_R - t_T the light time, solved iteratively
    from the reference link end's time.
    """
    observable_type = ObservableType.ONE_WAY_RANGE

    def compute(self, t: float, reference_link_end: LinkEndType = LinkEndType.RECEIVER) -> ObservationResult:
        if reference_link_end not in (LinkEndType.RECEIVER, LinkEndType.TRANSMITTER):
            raise ConfigurationError(f"Invalid reference link end {reference_link_end} for one-way range.")

        fixed = reference_link_end
        moving = LinkEndType.TRANSMITTER if fixed == LinkEndType.RECEIVER else LinkEndType.RECEIVER
        sign = -1.0 if fixed == LinkEndType.RECEIVER else 1.0

        fixed_state = self.link_end_state(fixed, t)
        moving_state = self.link_end_state(moving, t)
        light_time = np.linalg.norm(fixed_state[0:3] - moving_state[0:3]) / SPEED_OF_LIGHT

        tolerance = self.settings.light_time_tolerance
        for iteration in range(self.settings.maximum_light_time_iterations):
            moving_state = self.link_end_state(moving, t + sign * light_time)
            new_light_time = np.linalg.norm(fixed_state[0:3] - moving_state[0:3]) / SPEED_OF_LIGHT
            converged = abs(new_light_time - light_time) <= tolerance
            light_time = new_light_time
            if converged:
                break
        else:
            warnings.warn(f"Light-time iteration for {self.link_ends} at t={t} did not converge to {tolerance} s.")

        moving_state = self.link_end_state(moving, t + sign * light_time)
        states = {fixed: fixed_state, moving: moving_state}
        times = {fixed: t, moving: t + sign * light_time}

        relative = states[LinkEndType.RECEIVER][0:3] - states[LinkEndType.TRANSMITTER][0:3]
        distance = np.linalg.norm(relative)
        unit = relative / distance

        # Light-time correction of the partials: the moving link end's time depends on the range
        scaling = 1.0 / (1.0 - unit @ moving_state[3:6] / SPEED_OF_LIGHT)
        partials = {
            LinkEndType.RECEIVER: scaling * unit[np.newaxis, :],
            LinkEndType.TRANSMITTER: -scaling * unit[np.newaxis, :],
        }
        return ObservationResult(np.array([distance]), times, states, partials)


class PositionObservableModel(ObservationModel):
    """Cartesian position of the observed body (or station) in the global frame."""
    observable_type = ObservableType.POSITION_OBSERVABLE

    def compute(self, t: float, reference_link_end: LinkEndType = LinkEndType.OBSERVED_BODY) -> ObservationResult:
        state = self.link_end_state(LinkEndType.OBSERVED_BODY, t)
        return ObservationResult(state[0:3].copy(),
                                 {LinkEndType.OBSERVED_BODY: t},
                                 {LinkEndType.OBSERVED_BODY: state},
                                 {LinkEndType.OBSERVED_BODY: np.eye(3)})


OBSERVATION_MODEL_TYPES = {
    ObservableType.ONE_WAY_RANGE: OneWayRangeModel,
    ObservableType.POSITION_OBSERVABLE: PositionObservableModel,
}


def create_observation_model(settings: ObservationSettings, environment: Environment) -> ObservationModel:
    if settings.observable_type not in OBSERVATION_MODEL_TYPES:
        raise ConfigurationError(f"No observation model for {settings.observable_type}.")
    return OBSERVATION_MODEL_TYPES[settings.observable_type](settings, environment)
