"""Gradient descent with a warm-started backtracking line search.

Implemented after https://en.wikipedia.org/wiki/Gradient_descent and
https://en.wikipedia.org/wiki/Backtracking_line_search.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence

import numpy as np

from speck_app.engine.errors import LineSearchError

__all__ = [
    "Problem",
    "LineSearchSettings",
    "IterationState",
    "SearchResult",
    "ACCEPTANCE_CONDITIONS",
    "search_minimum",
]

logger = logging.getLogger(__name__)

ACCEPTANCE_CONDITIONS = ("armijo", "legacy")


class Problem(Protocol):
    def cost(self, parameters: np.ndarray) -> float: ...

    def gradient(self, parameters: np.ndarray) -> np.ndarray: ...


@dataclass(frozen=True)
class LineSearchSettings:
    max_iterations: int = 20_000
    initial_step: float = 0.1
    c: float = 0.5
    tau: float = 0.8
    condition: str = "legacy"
    max_shrinks: int = 200
    report_every: int = 400
    tolerance: Optional[float] = None

    def validate(self) -> list[str]:
        errs = []
        if self.max_iterations < 0:
            errs.append("Iteration count must not be negative")
        if not self.initial_step > 0:
            errs.append("Initial step size must be positive")
        if not 0.0 < self.c < 1.0:
            errs.append("Control factor c must lie in (0, 1)")
        if not 0.0 < self.tau < 1.0:
            errs.append("Shrink factor tau must lie in (0, 1)")
        if self.condition not in ACCEPTANCE_CONDITIONS:
            errs.append(f"Unknown acceptance condition: {self.condition}")
        if self.max_shrinks < 1:
            errs.append("At least one line search shrink must be allowed")
        if self.report_every < 1:
            errs.append("Report interval must be positive")
        if self.tolerance is not None and self.tolerance < 0:
            errs.append("Convergence tolerance must not be negative")
        return errs


@dataclass(frozen=True)
class IterationState:
    iteration: int
    cost: float
    gradient: np.ndarray
    step_size: float
    parameters: np.ndarray

    @property
    def gradient_norm(self) -> float:
        return float(np.linalg.norm(self.gradient))


@dataclass
class SearchResult:
    parameters: np.ndarray
    iterations: int
    cost: float
    step_size: float
    converged: bool = False
    trace: list[IterationState] = field(default_factory=list)


def search_minimum(
    problem: Problem,
    initial_params: Sequence[float],
    max_iterations: int,
    initial_step_size: float,
    *,
    c: float = 0.5,
    tau: float = 0.8,
    condition: str = "legacy",
    max_shrinks: int = 200,
    tolerance: Optional[float] = None,
    report_every: int = 400,
    callback: Optional[Callable[[IterationState], None]] = None,
) -> SearchResult:
    """Minimise ``problem.cost`` starting from ``initial_params``.

    Every iteration starts its backtracking at the step size accepted in the
    previous one, so the step only ever shrinks. The loop runs exactly
    ``max_iterations`` times unless ``tolerance`` is given, in which case it
    stops once the gradient norm drops to or below it.

    ``condition`` selects the acceptance test for a step ``alpha``:

    ``"legacy"``
        ``cost(p) - cost(p - alpha*g) >= alpha * (-c * <g, g>)``, which also
        accepts steps that raise the cost by a bounded amount. This is the
        default so existing calibrations are reproduced.
    ``"armijo"``
        ``cost(p) - cost(p - alpha*g) >= alpha * c * <g, g>``

    When the step has shrunk below the float resolution of the parameters the
    search has reached a stationary point: it stops there and reports
    ``converged``. The state after the last iteration is always reported, in
    addition to every ``report_every``-th one.

    Raises :class:`LineSearchError` when the cost or gradient is not finite
    or when no step is accepted within ``max_shrinks`` shrinks.
    """

    if condition not in ACCEPTANCE_CONDITIONS:
        raise ValueError(f"Unknown acceptance condition: {condition}")
    if not initial_step_size > 0:
        raise ValueError("Initial step size must be positive")

    parameters = np.array(initial_params, dtype=float)
    last_step_size = float(initial_step_size)
    current_cost = float(problem.cost(parameters))
    trace: list[IterationState] = []
    converged = False
    iterations = 0

    for i in range(int(max_iterations)):
        gradient = np.asarray(problem.gradient(parameters), dtype=float)
        if gradient.shape != parameters.shape:
            raise ValueError(
                f"Gradient shape {gradient.shape} does not match parameters {parameters.shape}"
            )
        if not math.isfinite(current_cost) or not np.all(np.isfinite(gradient)):
            raise LineSearchError(i, 0, "cost or gradient is not finite")

        if i % report_every == 0:
            trace.append(_report(i, current_cost, gradient, last_step_size, parameters, callback))

        squared_norm = float(np.dot(gradient, gradient))
        if tolerance is not None and math.sqrt(squared_norm) <= tolerance:
            converged = True
            break

        threshold = c * squared_norm if condition == "armijo" else -c * squared_norm
        alpha = last_step_size
        shrinks = 0
        stationary = False
        while True:
            candidate = parameters - alpha * gradient
            candidate_cost = float(problem.cost(candidate))
            # NaN costs compare false and force a shrink
            if current_cost - candidate_cost >= alpha * threshold:
                break
            if np.array_equal(candidate, parameters):
                stationary = True
                break
            shrinks += 1
            if shrinks > max_shrinks:
                raise LineSearchError(i, shrinks, "no step satisfied the acceptance condition")
            alpha *= tau

        if stationary:
            logger.debug("iteration %d: step below float resolution, stopping at cost=%.6g", i, current_cost)
            converged = True
            break

        parameters = candidate
        current_cost = candidate_cost
        last_step_size = alpha
        iterations = i + 1

    if not trace or trace[-1].iteration != iterations:
        gradient = np.asarray(problem.gradient(parameters), dtype=float)
        trace.append(_report(iterations, current_cost, gradient, last_step_size, parameters, callback))

    return SearchResult(
        parameters=parameters,
        iterations=iterations,
        cost=current_cost,
        step_size=last_step_size,
        converged=converged,
        trace=trace,
    )


def _report(
    iteration: int,
    cost: float,
    gradient: np.ndarray,
    step_size: float,
    parameters: np.ndarray,
    callback: Optional[Callable[[IterationState], None]],
) -> IterationState:
    state = IterationState(iteration, cost, gradient.copy(), step_size, parameters.copy())
    logger.debug(
        "iteration %d: cost=%.6g |grad|=%.3g step=%.3g params=%s",
        iteration,
        cost,
        state.gradient_norm,
        step_size,
        np.array2string(parameters, precision=6),
    )
    if callback is not None:
        callback(state)
    return state
