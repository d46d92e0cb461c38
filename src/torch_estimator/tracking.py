"""Predict/update loop over a stream of timestamped observations."""

from __future__ import annotations

import dataclasses
from typing import Iterable, Optional

import torch

from . import errlog
from .errors import NumericalError
from .estimator import Estimator, GaussianState


@dataclasses.dataclass
class Observation:
    """Timestamped observation ``z = H x + v, v ~ N(0, R)``.

    Attributes:
        timestamp (float): Time at which the observation was sampled.
        measure (torch.Tensor | float): Observation ``z``. If any component is NaN, the observation is missing.
            Shape: ``(U, 1)`` or ``(U,)``
        measurement_matrix (torch.Tensor): Observation model ``H``.
            Shape: ``(U, N)``
        measurement_noise (torch.Tensor | float): Observation noise covariance ``R``.
            Shape: ``(U, U)``
        control (torch.Tensor | None): Control input applied since the previous observation.
            Shape: ``(M, 1)`` or ``(M,)``
    """

    timestamp: float
    measure: torch.Tensor | float
    measurement_matrix: torch.Tensor
    measurement_noise: torch.Tensor | float
    control: Optional[torch.Tensor] = None


def track(
    estimator: Estimator,
    observations: Iterable[Observation],
    *,
    skip_failures=True,
    return_all=False,
    scope=f"{__name__}.track",
) -> GaussianState:
    """Run the classic predict/update loop over a stream of observations.

    For each observation (expected in time order), the estimator is predicted to the observation timestamp
    (with the observation control) and then updated with it. The estimator is modified in place.

    - Observations with a NaN measure are missing: only the prediction is done.
    - If an update fails with a :class:`~torch_estimator.errors.NumericalError`, it is logged and the observation
      is dropped (the prediction is kept). With ``skip_failures=False``, the error is raised instead.
    - Out-of-order timestamps are processed as is (negative ``dt``), with a warning.

    Args:
        estimator (Estimator): Estimator to drive.
        observations (Iterable[Observation]): Observations in time order.
        skip_failures (bool): Drop the observations that cannot be processed instead of raising.
            Default: True
        return_all (bool): If True, return the posterior state after each observation as a single
            `GaussianState` with a leading time dimension. Otherwise, return only the last state.
            Default: False
        scope (str): Scope of the log messages.

    Returns:
        GaussianState: Either the last posterior state, or all the posterior states.
            Shape (mean): ``([T, ]N, 1)``
            Shape (covariance): ``([T, ]N, N)``

    Raises:
        InvalidArgument: If an observation has inconsistent shapes.
        NumericalError: If an update fails and ``skip_failures`` is False.
    """
    logger = errlog.get_logger(scope)
    means: list[torch.Tensor] = []
    covariances: list[torch.Tensor] = []

    for observation in observations:
        if observation.timestamp < estimator.last_timestamp:
            logger.warning(
                "Observation at t=%f is older than the last prediction (t=%f)",
                observation.timestamp,
                estimator.last_timestamp,
            )

        estimator.predict(observation.timestamp, observation.control)

        measure = torch.as_tensor(observation.measure, dtype=estimator.dtype, device=estimator.device)
        if torch.isnan(measure).any():
            logger.debug("Missing measure at t=%f, skipping the update", observation.timestamp)
        else:
            try:
                estimator.update(measure, observation.measurement_matrix, observation.measurement_noise)
            except NumericalError as error:
                if not skip_failures:
                    logger.severe("Update failed at t=%f: %s", observation.timestamp, error)
                    raise
                logger.warning("Dropping the observation at t=%f: %s", observation.timestamp, error)

        if return_all:
            state = estimator.state
            means.append(state.mean)
            covariances.append(state.covariance)

    if not return_all:
        return estimator.state

    if not means:
        dim_x = estimator.state_dim
        return GaussianState(
            torch.empty((0, dim_x, 1), dtype=estimator.dtype, device=estimator.device),
            torch.empty((0, dim_x, dim_x), dtype=estimator.dtype, device=estimator.device),
        )

    return GaussianState(torch.stack(means), torch.stack(covariances))
