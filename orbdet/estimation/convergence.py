from enum import Enum
from typing import List, Tuple


class ConvergenceStatus(Enum):
    CONTINUE = "continue"
    CONVERGED = "converged"
    STALLED = "stalled"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


class EstimationConvergenceChecker:
    """
    Decides after each iteration whether the estimation continues.

    Args:
        maximum_iterations (int): Maximum number of iterations.
        minimum_residual_change (float): Converged once the relative change of the RMS
                                         residual between iterations falls below this value.
        minimum_residual (float): Converged once the RMS residual falls below this value.
        iterations_without_improvement (int): Stalled once this many consecutive iterations
                                              did not improve on the best RMS residual.
    """
    def __init__(self, maximum_iterations: int = 5, minimum_residual_change: float = 0.0,
                 minimum_residual: float = 0.0, iterations_without_improvement: int = 2):
        if maximum_iterations < 1:
            raise ValueError("At least one iteration is required.")
        if iterations_without_improvement < 1:
            raise ValueError("iterations_without_improvement must be at least 1.")
        self.maximum_iterations = maximum_iterations
        self.minimum_residual_change = minimum_residual_change
        self.minimum_residual = minimum_residual
        self.iterations_without_improvement = iterations_without_improvement

    def check(self, rms_history: List[float]) -> Tuple[ConvergenceStatus, str]:
        """
        Args:
            rms_history (list[float]): RMS residual of every completed iteration.

        Returns:
            tuple: (ConvergenceStatus, human-readable reason).
        """
        iteration = len(rms_history)
        if iteration == 0:
            return ConvergenceStatus.CONTINUE, ""

        current = rms_history[-1]
        if current < self.minimum_residual:
            return ConvergenceStatus.CONVERGED, (
                f"RMS residual {current:.6e} below minimum {self.minimum_residual:.6e}.")

        if iteration > 1:
            previous = rms_history[-2]
            if previous > 0.0 and abs(previous - current) / previous < self.minimum_residual_change:
                return ConvergenceStatus.CONVERGED, (
                    f"Relative RMS change {abs(previous - current) / previous:.6e} below "
                    f"{self.minimum_residual_change:.6e}.")

        best_index = min(range(iteration), key=lambda i: rms_history[i])
        if iteration - 1 - best_index >= self.iterations_without_improvement:
            return ConvergenceStatus.STALLED, (
                f"No improvement on best RMS residual {rms_history[best_index]:.6e} "
                f"for {iteration - 1 - best_index} iterations.")

        if iteration >= self.maximum_iterations:
            return ConvergenceStatus.MAX_ITERATIONS_REACHED, (
                f"Maximum number of iterations ({self.maximum_iterations}) reached.")

        return ConvergenceStatus.CONTINUE, ""
