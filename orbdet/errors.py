"""
Exception types shared across the toolkit.

Configuration errors are raised while a simulation is being assembled and are never
retried. Singularity errors are raised at the point where a numerical singularity is
detected. Non-convergence of the estimator is not an error: it is reported as a
terminal state of the estimation.
"""


class ConfigurationError(ValueError):
    """
    Raised when a simulation is assembled inconsistently (missing body or model,
    mismatched settings type, inconsistent block sizes).
    """
    pass


class ElementRangeError(ValueError):
    """
    Raised when orbital elements are outside the domain of a conversion routine.
    """
    pass


class SingularityError(ArithmeticError):
    """
    Raised when a numerical singularity is detected (e.g. pure-retrograde orbit in
    the unified state model, non-unit quaternion).
    """
    pass


class SingularInformationMatrixError(SingularityError):
    """
    Raised when the normal equations of the least-squares adjustment cannot be solved
    reliably (non-finite entries, condition number above limit, or failed factorization).

    Attributes:
        condition_number (float): Condition number of the normalized information matrix.
        partial_output: Estimation output of the iterations completed before the failure
                        (set by the orbit determination manager).
    """
    def __init__(self, message: str, condition_number: float = float('nan')):
        super().__init__(message)
        self.condition_number = condition_number
        self.partial_output = None


class PropagationError(RuntimeError):
    """
    Raised when the numerical integrator reports a failed step.
    """
    pass
