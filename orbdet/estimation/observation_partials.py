"""
Design matrix rows of the observations.

The partial of an observable w.r.t. the parameters is built by chaining its partials
w.r.t. the link-end positions through the partials of the link-end positions w.r.t. the
integrated states, and through [Phi | S] evaluated at each link-end time.

Quaternions enter the observations only through their direction: the rotation models
renormalize the propagated quaternion, and the initial quaternion parameter is
renormalized when set. Both normalizations are chained into the partials, so the design
matrix has no component along the quaternion norm.
"""
from typing import Tuple

import numpy as np

from orbdet.astro.attitude import (
    normalization_jacobian,
    normalize_quaternion,
    rotation_matrix_derivatives_wrt_quaternion,
)
from orbdet.dynamics.state_types import StateType
from orbdet.environment.bodies import Environment
from orbdet.estimation.observation_models import LinkEndType, ObservationModel
from orbdet.estimation.parameters import InitialRotationalState


class ObservationPartialCalculator:
    """
    Args:
        environment (Environment): Bodies of the simulation.
        variational_solver (VariationalEquationsSolver): Propagated [x | Phi | S].
        parameter_set (EstimatableParameterSet): Estimated parameters.
    """
    def __init__(self, environment: Environment, variational_solver, parameter_set):
        self.environment = environment
        self.variational_solver = variational_solver
        self.parameter_set = parameter_set
        self.variational_equations = variational_solver.variational_equations

        translational = variational_solver.state_derivative.state_derivatives.get(StateType.TRANSLATIONAL)
        self.central_bodies = {}
        if translational is not None:
            self.central_bodies = dict(zip(translational.bodies_to_integrate, translational.central_bodies))

        self.column_map = self._parameter_columns()

    def _parameter_columns(self) -> np.ndarray:
        """Column of [Phi | S] of every entry of the parameter vector."""
        columns = []
        for parameter in self.parameter_set.parameters:
            if parameter.is_initial_state:
                start = self.variational_equations.body_state_index(parameter.state_type, parameter.associated_body)
            else:
                start = self.variational_equations.parameter_column(parameter)
            columns.extend(range(start, start + parameter.parameter_size))
        return np.array(columns, dtype=int)

    def _global_position_rows(self, body: str) -> list:
        """
        Rows of [Phi | S] whose sum gives the partials of the global position of a body:
        its own relative position rows and those of each integrated central body in its chain.
        """
        rows = []
        while body in self.central_bodies:
            rows.append(self.variational_equations.body_state_index(StateType.TRANSLATIONAL, body))
            body = self.central_bodies[body]
        return rows

    def link_end_partials(self, link_end, position_partial: np.ndarray, t: float) -> np.ndarray:
        """
        Partials of an observable w.r.t. all columns of [Phi | S] through one link end.

        Args:
            link_end (LinkEndId): Link end.
            position_partial (np.ndarray): d(observable)/d(link-end position), shape (size, 3).
            t (float): Link-end time.

        Returns:
            np.ndarray: Shape (size, n + p).
        """
        phi_s = self.variational_solver.state_transition_and_sensitivity_matrix(t)
        partial = np.zeros((position_partial.shape[0], phi_s.shape[1]))

        for row in self._global_position_rows(link_end.body):
            partial += position_partial @ phi_s[row:row + 3, :]

        integrated_rotational = self.variational_equations.integrated_states.get(StateType.ROTATIONAL, [])
        if link_end.station and link_end.body in integrated_rotational:
            body = self.environment.get_body(link_end.body)
            offset = body.get_ground_station(link_end.station).body_fixed_position
            row = self.variational_equations.body_state_index(StateType.ROTATIONAL, link_end.body)
            # Station position uses R(q / |q|) of the propagated quaternion
            quaternion = self.variational_solver.state_history.state_at(t)[row:row + 4]
            rotation_derivatives = rotation_matrix_derivatives_wrt_quaternion(normalize_quaternion(quaternion))
            position_wrt_quaternion = (np.column_stack([rotation_derivatives[k] @ offset for k in range(4)])
                                       @ normalization_jacobian(quaternion))
            partial += position_partial @ position_wrt_quaternion @ phi_s[row:row + 4, :]

        return partial

    def compute(self, model: ObservationModel, t: float, reference_link_end: LinkEndType) -> Tuple[np.ndarray, np.ndarray]:
        """
        Computed observation and its design matrix rows at one epoch.

        Returns:
            tuple: (computed value (size,), partials w.r.t. the parameter vector (size, P)).
        """
        result = model.compute(t, reference_link_end)
        full_partial = np.zeros((model.observable_size, self.variational_solver.number_of_columns))
        for link_end_type, position_partial in result.position_partials.items():
            full_partial += self.link_end_partials(model.link_ends[link_end_type], position_partial,
                                                   result.link_end_times[link_end_type])
        parameter_partial = full_partial[:, self.column_map]

        for parameter, (index, _) in zip(self.parameter_set.parameters, self.parameter_set.parameter_indices):
            if isinstance(parameter, InitialRotationalState):
                quaternion = parameter.get_parameter_value()[0:4]
                parameter_partial[:, index:index + 4] = (parameter_partial[:, index:index + 4]
                                                         @ normalization_jacobian(quaternion))
        return result.value, parameter_partial
