"""
Base class of the state derivative partials.

A partial object is tied to one model term (an acceleration, a torque, the kinematic
equations) acting on one integrated body. It is queried once, while the partial list is
built, for the functions that write its contribution into the variational matrix:

    fn, width = partial.get_derivative_function_wrt_state_of_integrated_body(body, state_type)

`fn(block)` adds the derivative of the term w.r.t. the state of `body` into `block`, a numpy
view on the variational matrix of shape (rows of the term, width). Functions always add,
so several partials may contribute to the same entries in any order.
"""
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

import numpy as np

from orbdet.dynamics.state_types import StateType

PartialFunction = Tuple[Optional[Callable[[np.ndarray], None]], int]

# Returned when a term does not depend on the requested state or parameter
NO_DEPENDENCY: PartialFunction = (None, 0)


class StateDerivativePartial(ABC):
    """
    Abstract base class for all state derivative partials.

    Args:
        state_type (StateType): State type whose derivative the term contributes to.
        integrated_body (str): Body whose state derivative the term contributes to.
    """
    def __init__(self, state_type: StateType, integrated_body: str):
        self.state_type = state_type
        self.integrated_body = integrated_body
        self.current_time = np.nan

    def reset_time(self, t: float = np.nan):
        """Invalidates the cached partials, so the next update recomputes them."""
        self.current_time = t

    def update(self, t: float):
        """Recomputes the cached partials from the current environment if t differs from the last update."""
        if not (t == self.current_time):
            self._update_state_partials(t)
            self.current_time = t

    def update_parameter_partials(self):
        """Recomputes cached parameter partials. Called after `update` for every partial."""
        pass

    @abstractmethod
    def _update_state_partials(self, t: float):
        pass

    @abstractmethod
    def get_derivative_function_wrt_state_of_integrated_body(self, body: str,
                                                             state_type: StateType) -> PartialFunction:
        """
        Args:
            body (str): Integrated body the derivative is taken w.r.t.
            state_type (StateType): State type of that body.

        Returns:
            tuple: (function adding the partial into a matrix block, column width) or NO_DEPENDENCY.
        """
        pass

    def get_parameter_partial_function(self, parameter) -> PartialFunction:
        """
        Args:
            parameter (EstimatableParameter): Non-initial-state parameter.

        Returns:
            tuple: (function adding the partial into a matrix block, column width) or NO_DEPENDENCY.
        """
        return NO_DEPENDENCY
