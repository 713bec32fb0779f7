from typing import Dict, List

from orbdet.dynamics.state_types import StateType
from orbdet.environment.bodies import Environment
from orbdet.errors import ConfigurationError
from orbdet.partials.acceleration_partials import ACCELERATION_PARTIAL_TYPES
from orbdet.partials.base import StateDerivativePartial
from orbdet.partials.rotational_partials import RotationalDynamicsPartial


def create_acceleration_partial(acceleration_model) -> StateDerivativePartial:
    """
    Creates the partial object of an acceleration model.

    Raises:
        ConfigurationError: If no partial is available for the model type.
    """
    for model_type, partial_type in ACCELERATION_PARTIAL_TYPES.items():
        if type(acceleration_model) is model_type:
            return partial_type(acceleration_model)
    raise ConfigurationError(f"No partials available for acceleration model {type(acceleration_model).__name__}.")


def create_state_derivative_partials(propagator_settings, environment: Environment) -> Dict[StateType, List[List[StateDerivativePartial]]]:
    """
    Creates the state derivative partials of every integrated body.

    Args:
        propagator_settings: Translational, rotational or multi-type propagator settings.
        environment (Environment): Bodies of the simulation.

    Returns:
        dict: StateType -> one list of partials per integrated body, in integration order.
    """
    partials = {}
    for settings in propagator_settings.single_type_settings():
        if settings.state_type == StateType.TRANSLATIONAL:
            partials[StateType.TRANSLATIONAL] = [
                [create_acceleration_partial(model) for model in settings.acceleration_models.get(body, [])]
                for body in settings.bodies_to_integrate
            ]
        elif settings.state_type == StateType.ROTATIONAL:
            partials[StateType.ROTATIONAL] = [
                [RotationalDynamicsPartial(environment, body, settings.torque_models.get(body, []))]
                for body in settings.bodies_to_integrate
            ]
        else:
            raise ConfigurationError(f"No state derivative partials for state type {settings.state_type}.")
    return partials
