"""
Unit Tests for the Variational Equations Assembler
--------------------------------------------------
"""

import random

import pytest
import numpy as np

from orbdet.dynamics.accelerations import CentralGravity
from orbdet.dynamics.state_types import StateType
from orbdet.environment.bodies import Body, Environment
from orbdet.environment.ephemerides import ConstantEphemeris
from orbdet.errors import ConfigurationError
from orbdet.estimation.parameters import EstimatableParameterSet, GravitationalParameter, InitialTranslationalState
from orbdet.partials.acceleration_partials import CentralGravityPartial
from orbdet.partials.base import NO_DEPENDENCY, StateDerivativePartial
from orbdet.propagators.variational_equations import StatePartialAdditionIndex, VariationalEquations

MU_EARTH = 398600.4418
TRANSLATIONAL = StateType.TRANSLATIONAL


class ConstantPartial(StateDerivativePartial):
    """Adds fixed blocks w.r.t. the translational states of the given bodies."""

    def __init__(self, integrated_body, blocks, width=6):
        super().__init__(TRANSLATIONAL, integrated_body)
        self.blocks = blocks
        self.width = width
        self.number_of_updates = 0

    def _update_state_partials(self, t):
        self.number_of_updates += 1

    def _add(self, block, body):
        block += self.blocks[body]

    def get_derivative_function_wrt_state_of_integrated_body(self, body, state_type):
        if state_type != TRANSLATIONAL or body not in self.blocks:
            return NO_DEPENDENCY
        return (lambda block: self._add(block, body)), self.width


@pytest.fixture
def two_bodies():
    return {TRANSLATIONAL: ['SatA', 'SatB']}


def test_velocity_position_identity_blocks(two_bodies):
    """Without partials only the kinematic identity blocks are set, and they are exactly I."""
    equations = VariationalEquations({TRANSLATIONAL: [[], []]}, two_bodies, two_bodies)
    matrix = equations.evaluate(0.0)

    expected = np.zeros((12, 12))
    expected[0:3, 3:6] = np.eye(3)
    expected[6:9, 9:12] = np.eye(3)
    assert np.array_equal(matrix, expected)


def test_identity_blocks_unaffected_by_partials(two_bodies):
    rng = np.random.default_rng(1)
    partial = ConstantPartial('SatA', {'SatA': rng.normal(size=(3, 6)), 'SatB': rng.normal(size=(3, 6))})
    equations = VariationalEquations({TRANSLATIONAL: [[partial], []]}, two_bodies, two_bodies)
    matrix = equations.evaluate(0.0)
    assert np.array_equal(matrix[0:3, 3:6], np.eye(3))
    assert np.array_equal(matrix[0:3, 0:3], np.zeros((3, 3)))
    assert np.array_equal(matrix[3:6, 0:6], partial.blocks['SatA'])
    assert np.array_equal(matrix[3:6, 6:12], partial.blocks['SatB'])
    assert np.array_equal(matrix[6:12, :6], np.zeros((6, 6)))


def test_accumulation_is_commutative(two_bodies):
    """The assembled matrix does not depend on the order of the partials."""
    rng = np.random.default_rng(7)
    partials = [ConstantPartial('SatA', {'SatA': rng.normal(size=(3, 6)), 'SatB': rng.normal(size=(3, 6))})
                for _ in range(4)]

    reference = VariationalEquations({TRANSLATIONAL: [partials, []]}, two_bodies, two_bodies).evaluate(0.0)
    shuffled_partials = list(partials)
    random.Random(3).shuffle(shuffled_partials)
    shuffled = VariationalEquations({TRANSLATIONAL: [shuffled_partials, []]}, two_bodies, two_bodies).evaluate(0.0)

    np.testing.assert_allclose(shuffled, reference, rtol=1e-14, atol=1e-14)
    expected = sum(p.blocks['SatA'] for p in partials)
    np.testing.assert_allclose(reference[3:6, 0:6], expected, rtol=1e-14)


def test_partial_list_ordered_by_column(two_bodies):
    partial_b = ConstantPartial('SatA', {'SatB': np.ones((3, 6))})
    partial_a = ConstantPartial('SatA', {'SatA': np.ones((3, 6))})
    equations = VariationalEquations({TRANSLATIONAL: [[partial_b, partial_a], []]}, two_bodies, two_bodies)
    entries = equations.state_partial_list[TRANSLATIONAL][0]
    assert [entry.column_start for entry in entries] == [0, 6]
    assert equations.state_partial_list[TRANSLATIONAL][1] == []


@pytest.fixture
def earth_orbiter():
    earth = Body('Earth', MU_EARTH, ConstantEphemeris())
    satellite = Body('Sat')
    env = Environment([earth, satellite])
    satellite.set_state(np.array([7000.0, 500.0, -200.0, 0.3, 7.4, 0.8]))
    model = CentralGravity(satellite, earth)
    return env, model


def test_update_partials_is_idempotent(earth_orbiter):
    env, model = earth_orbiter
    partial = CentralGravityPartial(model)
    integrated = {TRANSLATIONAL: ['Sat']}
    parameter_set = EstimatableParameterSet([
        InitialTranslationalState('Sat', env['Sat'].state, 'Earth'),
        GravitationalParameter(env['Earth']),
    ])
    equations = VariationalEquations({TRANSLATIONAL: [[partial]]}, integrated,
                                     parameter_set.estimated_initial_states, parameter_set)

    equations.update_partials(10.0)
    first = equations.set_body_state_partial_matrix().copy()
    equations.update_partials(10.0)
    second = equations.set_body_state_partial_matrix().copy()
    assert np.array_equal(first, second)
    assert np.array_equal(equations.evaluate(10.0), first)


def test_update_partials_recomputes_at_same_time(earth_orbiter):
    """Every call resets the partials, so a changed environment is picked up at the same time."""
    env, model = earth_orbiter
    partial = ConstantPartial('Sat', {'Sat': np.zeros((3, 6))})
    equations = VariationalEquations({TRANSLATIONAL: [[partial]]}, {TRANSLATIONAL: ['Sat']}, {TRANSLATIONAL: ['Sat']})
    equations.update_partials(5.0)
    equations.update_partials(5.0)
    assert partial.number_of_updates == 2


def test_parameter_columns(earth_orbiter):
    env, model = earth_orbiter
    partial = CentralGravityPartial(model)
    parameter_set = EstimatableParameterSet([
        GravitationalParameter(env['Earth']),
        InitialTranslationalState('Sat', env['Sat'].state, 'Earth'),
    ])
    equations = VariationalEquations({TRANSLATIONAL: [[partial]]}, {TRANSLATIONAL: ['Sat']},
                                     parameter_set.estimated_initial_states, parameter_set)
    assert equations.number_of_parameter_columns == 1
    assert equations.parameter_column(parameter_set.other_parameters[0]) == 6

    matrix = equations.evaluate(0.0)
    assert matrix.shape == (6, 7)
    r = env['Sat'].position
    np.testing.assert_allclose(matrix[3:6, 6], -r / np.linalg.norm(r)**3)
    np.testing.assert_allclose(matrix[0:3, 6], np.zeros(3))


def test_derivative_of_state_transition_matrix(earth_orbiter):
    env, model = earth_orbiter
    partial = CentralGravityPartial(model)
    parameter_set = EstimatableParameterSet([
        InitialTranslationalState('Sat', env['Sat'].state, 'Earth'),
        GravitationalParameter(env['Earth']),
    ])
    equations = VariationalEquations({TRANSLATIONAL: [[partial]]}, {TRANSLATIONAL: ['Sat']},
                                     parameter_set.estimated_initial_states, parameter_set)
    matrix = equations.evaluate(0.0)

    rng = np.random.default_rng(0)
    phi_s = rng.normal(size=(6, 7))
    derivative = equations.derivative(0.0, phi_s)
    expected = matrix[:, :6] @ phi_s
    expected[:, 6] += matrix[:, 6]
    np.testing.assert_allclose(derivative, expected)


def test_addition_index(two_bodies):
    rng = np.random.default_rng(2)
    blocks = {'SatA': rng.normal(size=(3, 6))}
    partial = ConstantPartial('SatA', blocks)
    equations = VariationalEquations({TRANSLATIONAL: [[partial], []]}, two_bodies, two_bodies,
                                     state_partial_addition_indices=[StatePartialAdditionIndex(0, 6)])
    matrix = equations.evaluate(0.0)
    np.testing.assert_allclose(matrix[3:6, 6:9], blocks['SatA'][:, 0:3])
    np.testing.assert_allclose(matrix[3:6, 9:12], np.zeros((3, 3)))
    np.testing.assert_allclose(matrix[3:6, 0:6], blocks['SatA'])


def test_addition_index_outside_state_raises(two_bodies):
    with pytest.raises(ConfigurationError):
        VariationalEquations({TRANSLATIONAL: [[], []]}, two_bodies, two_bodies,
                             state_partial_addition_indices=[(0, 10, 3)])


def test_wrong_partial_width_raises(two_bodies):
    partial = ConstantPartial('SatA', {'SatA': np.zeros((3, 3))}, width=3)
    with pytest.raises(ConfigurationError):
        VariationalEquations({TRANSLATIONAL: [[partial], []]}, two_bodies, two_bodies)


def test_partial_list_length_mismatch_raises(two_bodies):
    with pytest.raises(ConfigurationError):
        VariationalEquations({TRANSLATIONAL: [[]]}, two_bodies, two_bodies)


def test_estimated_body_not_integrated_raises():
    with pytest.raises(ConfigurationError):
        VariationalEquations({TRANSLATIONAL: [[]]}, {TRANSLATIONAL: ['SatA']},
                             {TRANSLATIONAL: ['SatA', 'SatB']})


def test_integrated_body_not_estimated_raises(two_bodies):
    with pytest.raises(ConfigurationError):
        VariationalEquations({TRANSLATIONAL: [[], []]}, two_bodies, {TRANSLATIONAL: ['SatA']})


def test_rotational_rows_skip_nothing():
    """First-order rotational states: partials fill the full 7-row block, no identity is set."""
    class RotationalConstant(StateDerivativePartial):
        def __init__(self):
            super().__init__(StateType.ROTATIONAL, 'Rock')

        def _update_state_partials(self, t):
            pass

        def get_derivative_function_wrt_state_of_integrated_body(self, body, state_type):
            if state_type == StateType.ROTATIONAL and body == 'Rock':
                return (lambda block: block.__iadd__(np.full((7, 7), 2.0))), 7
            return NO_DEPENDENCY

    integrated = {StateType.ROTATIONAL: ['Rock']}
    equations = VariationalEquations({StateType.ROTATIONAL: [[RotationalConstant()]]}, integrated, integrated)
    np.testing.assert_allclose(equations.evaluate(0.0), np.full((7, 7), 2.0))
