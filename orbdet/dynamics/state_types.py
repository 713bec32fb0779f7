from enum import Enum
from typing import Dict, Iterable, List, Tuple

from orbdet.errors import ConfigurationError


class StateType(Enum):
    """
    Integrated state types, declared in the order their blocks appear in the
    concatenated state vector.
    """
    TRANSLATIONAL = "translational"
    ROTATIONAL = "rotational"


STATE_TYPE_ORDER = (StateType.TRANSLATIONAL, StateType.ROTATIONAL)

# Translational: [r, v]. Rotational: [q (body to inertial, scalar-first), w (body frame)].
_SINGLE_INTEGRATION_SIZE = {
    StateType.TRANSLATIONAL: 6,
    StateType.ROTATIONAL: 7,
}

_DIFFERENTIAL_EQUATION_ORDER = {
    StateType.TRANSLATIONAL: 2,
    StateType.ROTATIONAL: 1,
}


def single_integration_size(state_type: StateType) -> int:
    """Number of state entries per body for a state type."""
    if state_type not in _SINGLE_INTEGRATION_SIZE:
        raise ConfigurationError(f"Unknown state type {state_type}.")
    return _SINGLE_INTEGRATION_SIZE[state_type]


def differential_equation_order(state_type: StateType) -> int:
    if state_type not in _DIFFERENTIAL_EQUATION_ORDER:
        raise ConfigurationError(f"Unknown state type {state_type}.")
    return _DIFFERENTIAL_EQUATION_ORDER[state_type]


def derivative_rows_to_skip(state_type: StateType) -> int:
    """
    Rows at the top of a body block whose derivative is given directly by other state
    entries (the position rows of a second-order state); partials only fill the rest.
    """
    size = single_integration_size(state_type)
    return size - size // differential_equation_order(state_type)


def state_type_start_indices(bodies_per_type: Dict[StateType, List[str]]) -> Dict[StateType, int]:
    """
    Start index of each state type block in the concatenated state vector.

    Args:
        bodies_per_type (dict): Integrated bodies per state type.

    Returns:
        dict: StateType -> first index of its block.
    """
    start_indices = {}
    current_index = 0
    for state_type in STATE_TYPE_ORDER:
        if state_type in bodies_per_type:
            start_indices[state_type] = current_index
            current_index += single_integration_size(state_type) * len(bodies_per_type[state_type])
    return start_indices


def total_state_size(bodies_per_type: Dict[StateType, List[str]]) -> int:
    return sum(single_integration_size(state_type) * len(bodies)
               for state_type, bodies in bodies_per_type.items())


def state_block_indices(bodies_per_type: Dict[StateType, List[str]]) -> Dict[Tuple[StateType, str], int]:
    """
    Start index of every (state type, body) block in the concatenated state vector.
    """
    start_indices = state_type_start_indices(bodies_per_type)
    indices = {}
    for state_type in STATE_TYPE_ORDER:
        if state_type not in bodies_per_type:
            continue
        size = single_integration_size(state_type)
        for i, body in enumerate(bodies_per_type[state_type]):
            indices[(state_type, body)] = start_indices[state_type] + i * size
    return indices


def ordered_state_types(state_types: Iterable[StateType]) -> List[StateType]:
    present = set(state_types)
    return [state_type for state_type in STATE_TYPE_ORDER if state_type in present]
