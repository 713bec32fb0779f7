"""
Variational equations of the concatenated state.

The variational matrix [A | B] has one row per state entry and one column per state entry
plus one column per entry of the non-initial-state parameters. A is the Jacobian of the
state derivative w.r.t. the state and B its Jacobian w.r.t. the parameters. The state
transition and sensitivity matrices [Phi | S] obey

    d/dt [Phi | S] = A [Phi | S] + [0 | B],   [Phi | S](t0) = [I | 0].

The matrix is rebuilt from scratch at every evaluation from the registered partial functions.
"""
from typing import Callable, Dict, List, NamedTuple, Optional

import numpy as np

from orbdet.dynamics.state_types import (
    StateType,
    derivative_rows_to_skip,
    ordered_state_types,
    single_integration_size,
    state_type_start_indices,
    total_state_size,
)
from orbdet.errors import ConfigurationError


class StatePartialEntry(NamedTuple):
    """A registered partial function and the columns of the variational matrix it writes into."""
    column_start: int
    column_width: int
    function: Callable[[np.ndarray], None]


class StatePartialAdditionIndex(NamedTuple):
    """
    Post-processing step M[:, target:target + width] += M[:, source:source + width], applied
    after all partial functions have been evaluated.
    """
    source: int
    target: int
    width: int = 3


class VariationalEquations:
    """
    Assembles the variational matrix from the state derivative partials.

    Args:
        state_derivative_partials (dict): StateType -> one list of partials per integrated body.
        integrated_states (dict): StateType -> integrated bodies, in integration order.
        estimated_states (dict): StateType -> bodies whose initial state is estimated.
        parameter_set (EstimatableParameterSet): Estimated parameters (None for state only).
        state_partial_addition_indices (list[StatePartialAdditionIndex]): Column post-processing.

    Raises:
        ConfigurationError: On inconsistent partial lists, estimated bodies that are not
                            integrated or integrated bodies that are not estimated.
    """
    def __init__(self, state_derivative_partials: Dict[StateType, List[list]],
                 integrated_states: Dict[StateType, List[str]],
                 estimated_states: Dict[StateType, List[str]],
                 parameter_set=None,
                 state_partial_addition_indices=()):
        self.state_derivative_partials = state_derivative_partials
        self.integrated_states = {t: list(b) for t, b in integrated_states.items()}
        self.estimated_states = {t: list(b) for t, b in estimated_states.items()}
        self.parameter_set = parameter_set
        self.state_partial_addition_indices = [StatePartialAdditionIndex(*index)
                                               for index in state_partial_addition_indices]

        self._check_consistency()

        self.state_types = ordered_state_types(self.integrated_states.keys())
        self.state_type_start_indices = state_type_start_indices(self.integrated_states)
        self.number_of_states = total_state_size(self.integrated_states)

        self.parameter_columns = []
        column = self.number_of_states
        if parameter_set is not None:
            for parameter in parameter_set.other_parameters:
                self.parameter_columns.append((parameter, column))
                column += parameter.parameter_size
        self.number_of_parameter_columns = column - self.number_of_states

        for index in self.state_partial_addition_indices:
            if (max(index.source, index.target) + index.width > self.number_of_states
                    or min(index.source, index.target) < 0):
                raise ConfigurationError(f"Addition index {index} is outside the state columns.")

        self.variational_matrix = np.zeros((self.number_of_states,
                                            self.number_of_states + self.number_of_parameter_columns))
        self.state_partial_list: Dict[StateType, List[List[StatePartialEntry]]] = {}
        self.build_partial_list()

    def _check_consistency(self):
        for state_type, bodies in self.integrated_states.items():
            if state_type not in self.state_derivative_partials:
                raise ConfigurationError(f"No state derivative partials given for {state_type.value} states.")
            if len(self.state_derivative_partials[state_type]) != len(bodies):
                raise ConfigurationError(
                    f"Got {len(self.state_derivative_partials[state_type])} partial lists for "
                    f"{len(bodies)} integrated {state_type.value} bodies.")
        for state_type in self.state_derivative_partials:
            if state_type not in self.integrated_states:
                raise ConfigurationError(f"Partials given for non-integrated {state_type.value} states.")

        for state_type, bodies in self.estimated_states.items():
            integrated = self.integrated_states.get(state_type, [])
            for body in bodies:
                if body not in integrated:
                    raise ConfigurationError(
                        f"Initial {state_type.value} state of '{body}' is estimated but not integrated.")
        for state_type, bodies in self.integrated_states.items():
            estimated = self.estimated_states.get(state_type, [])
            for body in bodies:
                if body not in estimated:
                    raise ConfigurationError(
                        f"The {state_type.value} state of '{body}' is integrated but its initial state is not estimated.")

    def body_state_index(self, state_type: StateType, body: str) -> int:
        """Row/column index of the first state entry of a body."""
        bodies = self.integrated_states.get(state_type, [])
        if body not in bodies:
            raise ConfigurationError(f"Body '{body}' is not integrated for {state_type.value} states.")
        return self.state_type_start_indices[state_type] + bodies.index(body) * single_integration_size(state_type)

    def build_partial_list(self):
        """
        Queries every partial of every integrated body for its dependencies on the estimated
        states and parameters, and registers the non-empty ones ordered by column range.
        """
        self.state_partial_list = {}
        for state_type in self.state_types:
            entries_per_body = []
            for body_partials in self.state_derivative_partials[state_type]:
                entries = []
                for partial in body_partials:
                    for candidate_type in ordered_state_types(self.estimated_states.keys()):
                        for candidate_body in self.estimated_states[candidate_type]:
                            function, width = partial.get_derivative_function_wrt_state_of_integrated_body(
                                candidate_body, candidate_type)
                            if width == 0:
                                continue
                            if width != single_integration_size(candidate_type):
                                raise ConfigurationError(
                                    f"Partial {type(partial).__name__} returned {width} columns for the "
                                    f"{candidate_type.value} state of '{candidate_body}'.")
                            column = self.body_state_index(candidate_type, candidate_body)
                            entries.append(StatePartialEntry(column, width, function))

                    for parameter, column in self.parameter_columns:
                        function, width = partial.get_parameter_partial_function(parameter)
                        if width == 0:
                            continue
                        if width != parameter.parameter_size:
                            raise ConfigurationError(
                                f"Partial {type(partial).__name__} returned {width} columns for "
                                f"'{parameter.description}' of size {parameter.parameter_size}.")
                        entries.append(StatePartialEntry(column, width, function))

                # Ordered by column range; entries on the same range keep their registration order
                entries.sort(key=lambda entry: (entry.column_start, entry.column_width))
                entries_per_body.append(entries)
            self.state_partial_list[state_type] = entries_per_body

    def _all_partials(self):
        for state_type in self.state_types:
            for body_partials in self.state_derivative_partials[state_type]:
                for partial in body_partials:
                    yield partial

    def update_partials(self, t: float):
        """
        Recomputes all partials at time t: every partial is reset, then every partial is
        updated, then every parameter partial is updated. Calling it twice for the same
        time and environment gives the same matrix.
        """
        for partial in self._all_partials():
            partial.reset_time(np.nan)
        for partial in self._all_partials():
            partial.update(t)
        for partial in self._all_partials():
            partial.update_parameter_partials()

    def set_body_state_partial_matrix(self):
        """
        Rebuilds the variational matrix from the current (already updated) partials.
        """
        matrix = self.variational_matrix
        matrix[:, :] = 0.0

        # 1. Kinematic identity: position derivative w.r.t. velocity
        start = self.state_type_start_indices.get(StateType.TRANSLATIONAL)
        if start is not None:
            for i in range(len(self.integrated_states[StateType.TRANSLATIONAL])):
                row = start + 6 * i
                matrix[row:row + 3, row + 3:row + 6] = np.eye(3)

        # 2. Registered partial functions, added into their blocks
        for state_type in self.state_types:
            size = single_integration_size(state_type)
            skip = derivative_rows_to_skip(state_type)
            type_start = self.state_type_start_indices[state_type]
            for i, entries in enumerate(self.state_partial_list[state_type]):
                row_start = type_start + skip + i * size
                row_end = type_start + (i + 1) * size
                for entry in entries:
                    entry.function(matrix[row_start:row_end, entry.column_start:entry.column_start + entry.column_width])

        # 3. Column post-processing
        for index in self.state_partial_addition_indices:
            matrix[:, index.target:index.target + index.width] += matrix[:, index.source:index.source + index.width]

        return matrix

    def evaluate(self, t: float) -> np.ndarray:
        """
        Returns:
            np.ndarray: Copy of the variational matrix [A | B] at time t for the current environment.
        """
        self.update_partials(t)
        return self.set_body_state_partial_matrix().copy()

    def derivative(self, t: float, state_transition_and_sensitivity: np.ndarray) -> np.ndarray:
        """
        Time derivative of [Phi | S] for partials already updated to time t.

        Args:
            t (float): Time [s].
            state_transition_and_sensitivity (np.ndarray): [Phi | S], shape (n, n + p).

        Returns:
            np.ndarray: A [Phi | S] + [0 | B].
        """
        matrix = self.set_body_state_partial_matrix()
        n = self.number_of_states
        derivative = matrix[:, :n] @ state_transition_and_sensitivity
        derivative[:, n:] += matrix[:, n:]
        return derivative

    def parameter_column(self, parameter) -> Optional[int]:
        for p, column in self.parameter_columns:
            if p is parameter:
                return column
        return None
