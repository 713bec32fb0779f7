from typing import Dict, List, Optional

import numpy as np

from orbdet.environment.bodies import Environment
from orbdet.errors import ConfigurationError
from orbdet.estimation.observation_models import (
    LinkEnds,
    LinkEndType,
    ObservableType,
    ObservationModel,
    ObservationSettings,
    create_observation_model,
)


class SingleObservationSet:
    """
    Observations of one observable over one set of link ends.

    Attributes:
        observable_type (ObservableType): Observable.
        link_ends (LinkEnds): Link ends.
        times (np.ndarray): Observation times at the reference link end, shape (N,).
        observations (np.ndarray): Observed values, shape (N, observable size).
        reference_link_end (LinkEndType): Link end whose time the observation times refer to.
    """
    def __init__(self, observable_type: ObservableType, link_ends: LinkEnds, times: np.ndarray,
                 observations: np.ndarray, reference_link_end: LinkEndType):
        self.observable_type = observable_type
        self.link_ends = link_ends
        self.times = np.asarray(times, dtype=float)
        self.observations = np.asarray(observations, dtype=float).reshape((len(self.times), observable_type.size))
        self.reference_link_end = reference_link_end

    def __len__(self):
        return len(self.times)

    def merged_with(self, other: "SingleObservationSet") -> "SingleObservationSet":
        """
        Observations of both sets, those of this set first.

        Raises:
            ConfigurationError: If the sets differ in observable, link ends or reference link end.
        """
        if (other.observable_type, other.link_ends, other.reference_link_end) != (
                self.observable_type, self.link_ends, self.reference_link_end):
            raise ConfigurationError(
                f"Cannot merge {other.observable_type.value} observations of {other.link_ends} "
                f"(reference {other.reference_link_end.value}) into {self.observable_type.value} "
                f"observations of {self.link_ends} (reference {self.reference_link_end.value}).")
        return SingleObservationSet(self.observable_type, self.link_ends,
                                    np.concatenate((self.times, other.times)),
                                    np.vstack((self.observations, other.observations)),
                                    self.reference_link_end)

    @property
    def concatenated_observations(self) -> np.ndarray:
        return self.observations.flatten()

    @property
    def number_of_observation_entries(self) -> int:
        return self.observations.size


class ObservationSimulationSettings:
    """
    Times at which to simulate one observable for one set of link ends.

    Args:
        observable_type (ObservableType): Observable.
        link_ends (LinkEnds): Link ends.
        times (array-like): Observation times [s].
        reference_link_end (LinkEndType): Link end the times refer to (receiver by default).
    """
    def __init__(self, observable_type: ObservableType, link_ends: LinkEnds, times,
                 reference_link_end: Optional[LinkEndType] = None):
        self.observable_type = observable_type
        self.link_ends = link_ends
        self.times = np.asarray(times, dtype=float)
        if reference_link_end is None:
            reference_link_end = (LinkEndType.OBSERVED_BODY if observable_type == ObservableType.POSITION_OBSERVABLE
                                  else LinkEndType.RECEIVER)
        self.reference_link_end = reference_link_end


class ObservationSimulator:
    """
    Simulates one observable for all its link ends.

    Args:
        observable_type (ObservableType): Observable.
        environment (Environment): Bodies of the simulation.
        observation_settings (list[ObservationSettings]): One settings object per set of link ends.
    """
    def __init__(self, observable_type: ObservableType, environment: Environment,
                 observation_settings: List[ObservationSettings]):
        self.observable_type = observable_type
        self.environment = environment
        self.observation_models: Dict[LinkEnds, ObservationModel] = {}
        for settings in observation_settings:
            if settings.observable_type != observable_type:
                raise ConfigurationError(
                    f"Settings for {settings.observable_type.value} passed to the {observable_type.value} simulator.")
            if settings.link_ends in self.observation_models:
                raise ConfigurationError(f"Duplicate {observable_type.value} model for {settings.link_ends}.")
            self.observation_models[settings.link_ends] = create_observation_model(settings, environment)

    def get_observation_model(self, link_ends: LinkEnds) -> ObservationModel:
        if link_ends not in self.observation_models:
            raise ConfigurationError(f"No {self.observable_type.value} model for {link_ends}.")
        return self.observation_models[link_ends]

    def simulate(self, link_ends: LinkEnds, times, reference_link_end: LinkEndType) -> SingleObservationSet:
        model = self.get_observation_model(link_ends)
        times = np.asarray(times, dtype=float)
        values = np.zeros((len(times), self.observable_type.size))
        for i, t in enumerate(times):
            values[i] = model.compute(t, reference_link_end).value
        return SingleObservationSet(self.observable_type, link_ends, times, values, reference_link_end)


def create_observation_simulators(observation_settings: List[ObservationSettings],
                                  environment: Environment) -> Dict[ObservableType, ObservationSimulator]:
    """
    Groups the observation settings per observable and creates one simulator per observable.
    """
    grouped = {}
    for settings in observation_settings:
        grouped.setdefault(settings.observable_type, []).append(settings)
    return {observable: ObservationSimulator(observable, environment, settings_list)
            for observable, settings_list in grouped.items()}


def simulate_observations(simulation_settings: List[ObservationSimulationSettings],
                          observation_simulators: Dict[ObservableType, ObservationSimulator],
                          noise_std: Optional[float] = None,
                          rng: Optional[np.random.Generator] = None) -> Dict[ObservableType, Dict[LinkEnds, SingleObservationSet]]:
    """
    Simulates observations at the requested times. Settings for an observable and link ends
    that already have observations (e.g. a second tracking pass) are appended to them.

    Args:
        simulation_settings (list[ObservationSimulationSettings]): Observables, link ends and times.
        observation_simulators (dict): Simulator per observable.
        noise_std (float): Standard deviation of white Gaussian noise added to every entry.
        rng (np.random.Generator): Random generator for the noise (default_rng() if None).

    Returns:
        dict: {observable: {link_ends: SingleObservationSet}}.
    """
    if noise_std is not None and rng is None:
        rng = np.random.default_rng()

    observations = {}
    for settings in simulation_settings:
        if settings.observable_type not in observation_simulators:
            raise ConfigurationError(f"No simulator for {settings.observable_type.value} observations.")
        simulator = observation_simulators[settings.observable_type]
        observation_set = simulator.simulate(settings.link_ends, settings.times, settings.reference_link_end)
        if noise_std is not None and noise_std > 0.0:
            observation_set.observations = observation_set.observations + rng.normal(
                0.0, noise_std, size=observation_set.observations.shape)
        per_link_ends = observations.setdefault(settings.observable_type, {})
        if settings.link_ends in per_link_ends:
            observation_set = per_link_ends[settings.link_ends].merged_with(observation_set)
        per_link_ends[settings.link_ends] = observation_set
    return observations
