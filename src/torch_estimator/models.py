"""Model functions for constant-derivative motion.

This module provides the time-varying matrices of the classical *constant-derivative motion models*
such as:

- constant position (order = 0),
- constant velocity (order = 1),
- constant acceleration (order = 2),
- constant jerk, etc.

The state is composed of a value and its derivatives up to a given order, for each independent
dimension. As the transition depends on the elapsed time, it is given to the :class:`Estimator`
as a function ``dt -> A(dt)`` (see :class:`ConstantDerivativeModel`). The process noise covariance
is constant in the estimator: it is computed once for a nominal time step.
"""

from __future__ import annotations

import dataclasses
from typing import Optional

import torch

from .estimator import Estimator, constant_model

__all__ = [
    "ConstantDerivativeModel",
    "constant_derivative_estimator",
    "constant_model",
    "create_control_matrix",
    "create_process_matrix",
    "create_process_noise",
    "interleave",
    "position_measurement",
]


def interleave(x: torch.Tensor, size: int) -> torch.Tensor:
    """Interleave tensor along the first dimension.

    Consecutive groups of ``size`` rows are interleaved. It switches the state layout from
    "grouped by dimension" (``x, x', y, y'``) to "grouped by derivative order" (``x, y, x', y'``)
    with ``size = order + 1``.

    Notes:
        Indices ``0, 1, ..., k*size-1`` are remapped as:
        ``0, size, 2*size, ..., (k-1)*size,
          1, 1+size, ..., 1 + (k-1)*size,
          ...,
          size-1, 2*size-1, ..., k*size-1``

    Example:
        >>> x = torch.tensor([[1, 1], [2, 2], [3, 3], [4, 4], [5, 5], [6, 6]])
        >>> interleave(x, 3)
        tensor([[1, 1],
                [4, 4],
                [2, 2],
                [5, 5],
                [3, 3],
                [6, 6]])

    Args:
        x (torch.Tensor): Tensor to interleave.
            Shape: ``(B, ...)``
        size: Block size used for interleaving.
            Must divide ``B`` exactly (``B = k * size``).

    Returns:
        torch.Tensor: Interleaved tensor with the same shape as ``x``.
            Shape: ``(B, ...)``

    """
    shape = list(x.shape)
    return x.reshape([-1, size, *shape[1:]]).transpose(0, 1).reshape([-1, *shape[1:]])


def _taylor_coefficients(n: int, dt: float) -> torch.Tensor:
    # (1, dt, dt^2 / 2, ... dt^(n-1) / (n-1)!)
    range_ = torch.arange(n)
    range_[0] = 1
    return torch.tensor([dt**k for k in range(n)], dtype=torch.float64) / range_.cumprod(0)


def create_process_matrix(order: int, dt=1.0, approximate=False) -> torch.Tensor:
    r"""Create the transition matrix ``A(dt)`` for a single dimension.

    The state contains derivatives up to order ``order``. Assuming the expected
    (order+1)-th derivative and above are zero, the Taylor expansion yields:

    x^{(i)}(t + dt) = \sum_{k=0}^{order - i} \frac{dt^k}{k!} x^{(i+k)}(t)

    For ``dt = 0`` it is the identity.

    Examples:
        - First order (constant velocity) with ``dt = 1``::

            [
                [1.0, 1.0],
                [0.0, 1.0],
            ]

        - Second order (constant acceleration) with ``dt = 0.5``::

            [
                [1, 0.5, 0.125],
                [0, 1.0, 0.5],
                [0, 0.0, 1.0],
            ]

    Args:
        order (int): Highest derivative order included in the state (which is modeled as ~constant).
        dt (float): Time step duration.
            Default: 1.0.
        approximate (bool): If True, keep only first-order terms:
            ``x^{(i)}(t+dt) = x^{(i)}(t) + dt * x^{(i+1)}(t)``.
            Default: False.

    Returns:
        torch.Tensor: Transition matrix ``A(dt)``
            Shape: ``(order + 1, order + 1)``

    """
    coefficients = _taylor_coefficients(order + 1, dt)
    if approximate:
        coefficients[2:] = 0  # Keep only 1 and dt

    # Sum of diagonal tensors
    process_matrix = torch.zeros(order + 1, order + 1, dtype=torch.float64)
    for k, coef in enumerate(coefficients):
        process_matrix += torch.diag(torch.full((order + 1 - k,), coef.item(), dtype=torch.float64), k)
    return process_matrix


def create_control_matrix(order: int, dt=1.0) -> torch.Tensor:
    r"""Create the control matrix ``B(dt)`` for a single dimension.

    The control input is the (order+1)-th derivative, held constant during ``dt``. Integrating it gives:

    x^{(i)}(t + dt) = ... + \frac{dt^{order + 1 - i}}{(order + 1 - i)!} u

    For ``dt = 0`` it is null.

    Example:
        Constant velocity (order = 1), controlled by the acceleration: ``[[dt^2 / 2], [dt]]``

    Args:
        order (int): Highest derivative order included in the state.
        dt (float): Time step duration.
            Default: 1.0.

    Returns:
        torch.Tensor: Control matrix ``B(dt)``
            Shape: ``(order + 1, 1)``

    """
    return _taylor_coefficients(order + 2, dt)[1:].flip(0)[:, None]


def create_process_noise(
    process_std: float, order: int, dt=1.0, expected_model=False, approximate=False
) -> torch.Tensor:
    r"""Create the process noise covariance matrix ``Q`` for a single dimension.

    Two models are supported:

    **1. Constant order-th derivative (default)**
    The highest derivative is assumed constant over a time step, with additive noise:
    \forall 0 < h \le dt, x^{(order)}(t_k+h) = x^{(order)}(t_k) + w_k, where w_k \sim N(0, process_std**2).

    **2. Zero-mean (order+1)-th derivative (expected model)**
    The (order+1)-th derivative is modeled as white Gaussian noise over the interval:
    \forall 0 < h \le dt, x^{(order + 1)}(t_k+h) = w_k, where w_k \sim N(0, process_std**2)

    The resulting covariance is obtained by integrating the noise through the
    Taylor-expanded dynamics.

    Args:
        process_std (float): Process noise standard deviation.
            - Constant model: homogeneous to the order-th derivative.
            - Expected model: homogeneous to the (order+1)-th derivative.
        order (int): Highest derivative order included in the state (which is modeled as ~constant).
        dt (float): Time step duration.
            Default: 1.0.
        expected_model (bool): Use the zero-mean (order+1)-th derivative model.
            Default: False.
        approximate (bool): If True, keep only first order terms.
            Only the highest derivative receives noise.
            Default: False.

    Returns:
        torch.Tensor: Process noise covariance matrix ``Q``.
            Shape: ``(order + 1, order + 1)``.

    """
    coefficients = _taylor_coefficients(order + 1 + expected_model, dt)
    if approximate:
        coefficients[1 + expected_model :] = 0

    # For the expected model, we drop the first element (shifted by 1)
    coefficients = coefficients[expected_model:].flip(0)
    return process_std**2 * coefficients[:, None] @ coefficients[None]


def position_measurement(
    dim: int, order: int, measurement_std: float | torch.Tensor, order_by_dim=False
) -> tuple[torch.Tensor, torch.Tensor]:
    """Measurement model of the values (not the derivatives) of a constant-derivative state.

    Measurement noise is independent between the different dimensions.

    Args:
        dim (int): Number of independent dimensions.
        order (int): Highest derivative order included in the state.
        measurement_std (float | torch.Tensor): Measurement noise standard deviation.
            Shape: broadcastable to ``(dim,)``.
        order_by_dim (bool): State ordering convention (see :class:`ConstantDerivativeModel`).
            Default: False.

    Returns:
        torch.Tensor: Measurement matrix ``H``
            Shape: ``(dim, (order + 1) * dim)``
        torch.Tensor: Measurement noise ``R``
            Shape: ``(dim, dim)``
    """
    measurement_std = torch.broadcast_to(torch.as_tensor(measurement_std, dtype=torch.float64), (dim,))
    measurement_matrix = torch.eye(dim, (order + 1) * dim, dtype=torch.float64)
    if order_by_dim:
        measurement_matrix = interleave(measurement_matrix.T, dim).T
    return measurement_matrix.contiguous(), torch.diag(measurement_std**2)


@dataclasses.dataclass(frozen=True)
class ConstantDerivativeModel:
    """Constant-derivative motion for ``dim`` independent dimensions.

    Calling the model with ``dt`` returns the transition matrix ``A(dt)``, and :meth:`control`
    returns ``B(dt)`` for a control input on the (order+1)-th derivative of each dimension.
    Both are meant to be given as model functions to an :class:`Estimator`.

    Attributes:
        dim (int): Number of independent dimensions (1D, 2D, 3D, …).
            Default: 2.
        order (int): Highest derivative order included in the state.
            Default: 1 (constant velocity).
        order_by_dim (bool): State ordering convention.
            - True: group by dimension (e.g. ``x, x', y, y'``),
            - False: group by derivative order (e.g. ``x, y, x', y'``).
            Default: False.
        approximate (bool): Use a first-order approximation of the transition.
            Default: False.
    """

    dim: int = 2
    order: int = 1
    order_by_dim: bool = False
    approximate: bool = False

    @property
    def state_dim(self) -> int:
        """Dimension of the state: ``(order + 1) * dim``."""
        return (self.order + 1) * self.dim

    def __call__(self, dt: float) -> torch.Tensor:
        """Transition matrix ``A(dt)``.

        Shape: ``(state_dim, state_dim)``
        """
        process_matrix = torch.block_diag(
            *(create_process_matrix(self.order, dt, self.approximate) for _ in range(self.dim))
        )
        return self._reorder(process_matrix)

    def control(self, dt: float) -> torch.Tensor:
        """Control matrix ``B(dt)``.

        Shape: ``(state_dim, dim)``
        """
        control_matrix = torch.block_diag(*(create_control_matrix(self.order, dt) for _ in range(self.dim)))
        if self.order_by_dim:
            return control_matrix
        return interleave(control_matrix, self.order + 1)

    def process_noise(self, process_std: float | torch.Tensor, dt=1.0, expected_model=False) -> torch.Tensor:
        """Process noise covariance ``Q`` for a nominal time step.

        Args:
            process_std (float | torch.Tensor): Process noise standard deviation (see `create_process_noise`).
                Shape: broadcastable to ``(dim,)``.
            dt (float): Nominal time step.
                Default: 1.0
            expected_model (bool): Use the zero-mean (order+1)-th derivative model.
                Default: False

        Returns:
            torch.Tensor: Process noise covariance
                Shape: ``(state_dim, state_dim)``
        """
        process_std = torch.broadcast_to(torch.as_tensor(process_std), (self.dim,))
        process_noise = torch.block_diag(
            *(
                create_process_noise(process_std[k].item(), self.order, dt, expected_model, self.approximate)
                for k in range(self.dim)
            )
        )
        return self._reorder(process_noise)

    def measurement(self, measurement_std: float | torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Measurement model of the values (see `position_measurement`)."""
        return position_measurement(self.dim, self.order, measurement_std, self.order_by_dim)

    def _reorder(self, matrix: torch.Tensor) -> torch.Tensor:
        # Block matrices are built grouped by dimension
        if self.order_by_dim:
            return matrix
        return interleave(interleave(matrix, self.order + 1).T, self.order + 1).T.contiguous()


def constant_derivative_estimator(
    process_std: float | torch.Tensor,
    *,
    dim=2,
    order=1,
    nominal_dt=1.0,
    expected_model=False,
    order_by_dim=False,
    approximate=False,
    with_control=False,
    initial_state: Optional[torch.Tensor] = None,
    initial_std: float | torch.Tensor = 1.0,
    timestamp=0.0,
    **kwargs,
) -> Estimator:
    """Create an estimator following a constant-derivative motion.

    The transition ``A(dt)`` (and ``B(dt)`` if ``with_control``) follows the elapsed time between
    predictions. The process noise is computed once for ``nominal_dt``.

    Args:
        process_std (float | torch.Tensor): Process noise standard deviation (see `create_process_noise`).
            Shape: broadcastable to ``(dim,)``.
        dim (int): Number of independent dimensions.
            Default: 2.
        order (int): Highest derivative order included in the state.
            Default: 1 (constant velocity).
        nominal_dt (float): Time step used to build the constant process noise.
            Default: 1.0.
        expected_model (bool): Use the zero-mean (order+1)-th derivative noise model.
            Default: False.
        order_by_dim (bool): State ordering convention (see :class:`ConstantDerivativeModel`).
            Default: False.
        approximate (bool): Use a first-order approximation of the model.
            Default: False.
        with_control (bool): If True, the (order+1)-th derivatives are controlled (``M = dim``).
            Otherwise there is no control.
            Default: False.
        initial_state (torch.Tensor | None): Initial state. Zeros if None.
            Shape: ``((order + 1) * dim, 1)``
        initial_std (float | torch.Tensor): Initial standard deviation of the state components.
            Shape: broadcastable to ``((order + 1) * dim,)``
            Default: 1.0
        timestamp (float): Initial timestamp.
            Default: 0.0
        **kwargs: Additional keyword arguments of :class:`Estimator` (dtype, device, joseph_update, ...).

    Returns:
        Estimator: Estimator with a constant-derivative motion
    """
    model = ConstantDerivativeModel(dim, order, order_by_dim, approximate)

    if initial_state is None:
        initial_state = torch.zeros(model.state_dim, 1, dtype=torch.float64)

    initial_std = torch.broadcast_to(torch.as_tensor(initial_std, dtype=torch.float64), (model.state_dim,))

    return Estimator(
        model,
        model.control if with_control else None,
        model.process_noise(process_std, nominal_dt, expected_model),
        initial_state,
        torch.diag(initial_std**2),
        timestamp,
        **kwargs,
    )
