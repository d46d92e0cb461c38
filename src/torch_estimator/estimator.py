from __future__ import annotations

import contextlib
import dataclasses
from typing import Any, Callable, Optional, overload

import torch
import torch.linalg

from .errors import InvalidArgument, NumericalError

# Note on runtime:
# The gain is computed by inverting the innovation covariance S. In real cases, dim_z is small and
# the explicit inverse is usually faster than a Cholesky solve. The Cholesky path is kept as an option,
# it also rejects S that are not positive definite.


if hasattr(torch._tensor_str, "printoptions"):  # noqa: SLF001
    printoptions = torch._tensor_str.printoptions  # noqa: SLF001
else:

    @contextlib.contextmanager
    def printoptions(**kwargs):
        """Change pytorch printoptions temporarily. From the future of pytorch."""
        old_printoptions = torch._tensor_str.PRINT_OPTS  # noqa: SLF001
        torch.set_printoptions(**kwargs)
        try:
            yield
        finally:
            torch._tensor_str.PRINT_OPTS = old_printoptions  # noqa: SLF001


ModelFunction = Callable[[float], Any]
"""Function of the elapsed time ``dt`` returning a matrix (``A(dt)`` or ``B(dt)``)."""


def constant_model(matrix: Any) -> ModelFunction:
    """Wrap a constant matrix into a model function ``dt -> matrix``.

    This is how time-invariant systems are represented: the returned function ignores ``dt``.

    Args:
        matrix (Any): Constant matrix (tensor or array-like).

    Returns:
        ModelFunction: Function returning ``matrix`` for any ``dt``.
    """

    def model(dt: float) -> Any:  # pylint: disable=unused-argument
        return matrix

    return model


def _as_matrix(tensor: torch.Tensor) -> torch.Tensor:
    if tensor.ndim == 0:  # Scalar systems
        return tensor.reshape(1, 1)
    return tensor


@dataclasses.dataclass
class GaussianState:
    """Gaussian state x ~ N(mean, covariance).

    Snapshot of an :class:`Estimator` (see :attr:`Estimator.state`).

    Attributes:
        mean: Mean of the distribution (column vector).
            Shape: ``(dim, 1)``
        covariance: Covariance matrix of the distribution.
            Shape: ``(dim, dim)``
    """

    mean: torch.Tensor
    covariance: torch.Tensor

    def clone(self) -> GaussianState:
        """Return a deep copy of the state.

        Returns:
            GaussianState: The cloned state
        """
        return GaussianState(self.mean.clone(), self.covariance.clone())

    def __getitem__(self, idx) -> GaussianState:
        """Index/slice along the leading (time) dimension of stacked states.

        Args:
            idx (Any): Index/slice applied to the leading dimensions.

        Returns:
            GaussianState: Indexed GaussianState.
        """
        return GaussianState(self.mean[idx], self.covariance[idx])

    @overload
    def to(self, dtype: torch.dtype) -> GaussianState: ...

    @overload
    def to(self, device: torch.device) -> GaussianState: ...

    def to(self, fmt):
        """Convert a GaussianState to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the state to.

        Returns:
            GaussianState: The GaussianState with the right format
        """
        return GaussianState(self.mean.to(fmt), self.covariance.to(fmt))


class Estimator:  # pylint: disable=too-many-instance-attributes
    """Linear Kalman state estimator with time-varying system matrices.

    It estimates the hidden state of a linear system under Gaussian noise:

        x(t) = A(dt) x(t - dt) + B(dt) u + w,   w ~ N(0, Q)
        z    = H x(t) + v,                      v ~ N(0, R)

    where:
    - ``x`` is the hidden state (dimension ``N``),
    - ``u`` is the control input (dimension ``M``, ``M = N`` by default),
    - ``z`` is an observation (dimension ``U``, chosen at each update),
    - ``A(dt)`` and ``B(dt)`` are functions of the elapsed time since the last prediction,
    - ``Q`` is the process noise covariance (constant, it does not depend on ``dt``),
    - ``H`` and ``R`` are given with each observation.

    The estimator holds the current estimate ``x`` with its error covariance ``P`` and the timestamp of the
    last prediction. It is mutated in place by :meth:`predict` and :meth:`update`, that the caller
    interleaves in time order.

    Shape conventions:
    - Vectors are **column vectors** with shape ``(dim, 1)``. 1-d inputs are accepted and turned into columns.
    - Dimensions are checked at runtime, a mismatch raises :class:`~torch_estimator.errors.InvalidArgument`.

    The estimator is not thread-safe: concurrent calls on the same instance must be serialized by the caller.

    Attributes:
        joseph_update (bool): If True, use the Joseph form covariance update for improved numerical stability.
            Default: False
        use_cholesky (bool): If True, compute the Kalman gain with a Cholesky solve instead of inverting
            the innovation covariance. Non positive-definite innovation covariances are then rejected.
            Default: False
    """

    _REPR_SPLIT_LENGTH = 110

    def __init__(  # pylint: disable=too-many-arguments
        self,
        transition: torch.Tensor | ModelFunction,
        control: torch.Tensor | ModelFunction | None,
        process_noise: torch.Tensor,
        state: torch.Tensor,
        covariance: torch.Tensor,
        timestamp=0.0,
        *,
        dtype=torch.float64,
        device: Optional[torch.device] = None,
        joseph_update=False,
        use_cholesky=False,
    ) -> None:
        """Constructor.

        Args:
            transition (torch.Tensor | ModelFunction): State transition matrix ``A`` or function ``dt -> A(dt)``.
                Shape: ``(N, N)``
            control (torch.Tensor | ModelFunction | None): Control matrix ``B`` or function ``dt -> B(dt)``.
                If None, there is no control on the system (``M = N`` and ``B = 0``).
                Shape: ``(N, M)``
            process_noise (torch.Tensor): Process noise covariance ``Q``.
                Shape: ``(N, N)``
            state (torch.Tensor): Initial state estimate ``x0``.
                Shape: ``(N, 1)`` or ``(N,)``
            covariance (torch.Tensor): Initial error covariance ``P0``.
                Shape: ``(N, N)``
            timestamp (float): Initial timestamp ``t0``.
                Default: 0.0
            dtype (torch.dtype): Dtype of the estimator. Inputs are converted to it.
                Default: torch.float64
            device (torch.device | None): Device of the estimator. If None, the device of ``state`` is used.
            joseph_update (bool): Use the Joseph form covariance update.
                Default: False
            use_cholesky (bool): Compute the Kalman gain with a Cholesky solve.
                Default: False
        """
        mean = torch.as_tensor(state, dtype=dtype, device=device)
        self._dtype = dtype
        self._device = mean.device
        self.joseph_update = joseph_update
        self.use_cholesky = use_cholesky

        if mean.ndim < 2:
            mean = mean.reshape(-1, 1)
        if mean.ndim != 2 or mean.shape[1] != 1:
            raise InvalidArgument(f"state should be a column vector, got shape {tuple(mean.shape)}")

        dim_x = mean.shape[0]
        self._x = mean.clone()
        self._P = self._matrix(covariance, (dim_x, dim_x), "covariance").clone()
        self._Q = self._matrix(process_noise, (dim_x, dim_x), "process_noise").clone()

        # Constant matrices are copied so that the estimator owns its model
        if not callable(transition):
            transition = constant_model(self._tensor(transition).clone())
        self._transition: ModelFunction = transition
        self._matrix(self._transition(0.0), (dim_x, dim_x), "transition")  # A(0) is required

        self._control: Optional[ModelFunction] = None
        self._control_dim = dim_x
        if control is not None:
            if not callable(control):
                control = constant_model(self._tensor(control).clone())
            self._control = control
            control_matrix = _as_matrix(self._tensor(self._control(0.0)))
            if control_matrix.ndim != 2 or control_matrix.shape[0] != dim_x:
                raise InvalidArgument(f"control should have shape ({dim_x}, M), got {tuple(control_matrix.shape)}")
            self._control_dim = control_matrix.shape[1]

        self._last_timestamp = float(timestamp)

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable (N)."""
        return self._x.shape[0]

    @property
    def control_dim(self) -> int:
        """Dimension of the control input (M)."""
        return self._control_dim

    @property
    def device(self) -> torch.device:
        """Device of the estimator."""
        return self._device

    @property
    def dtype(self) -> torch.dtype:
        """Dtype of the estimator."""
        return self._dtype

    @property
    def last_timestamp(self) -> float:
        """Timestamp of the last prediction (or the initial timestamp)."""
        return self._last_timestamp

    @property
    def state_estimate(self) -> torch.Tensor:
        """Copy of the current state estimate ``x``.

        Setting it overrides the estimate (e.g. re-initialization). It does not change the timestamp.

        Shape: ``(N, 1)``
        """
        return self._x.clone()

    @state_estimate.setter
    def state_estimate(self, state: torch.Tensor) -> None:
        self._x = self._column(state, self.state_dim, "state_estimate").clone()

    @property
    def error_covariance(self) -> torch.Tensor:
        """Copy of the current error covariance ``P``.

        Setting it overrides the covariance. Only the shape is checked, the caller is responsible
        for giving a symmetric positive semi-definite matrix. It does not change the timestamp.

        Shape: ``(N, N)``
        """
        return self._P.clone()

    @error_covariance.setter
    def error_covariance(self, covariance: torch.Tensor) -> None:
        self._P = self._matrix(covariance, (self.state_dim, self.state_dim), "error_covariance").clone()

    @property
    def process_noise(self) -> torch.Tensor:
        """Copy of the process noise covariance ``Q``.

        Shape: ``(N, N)``
        """
        return self._Q.clone()

    @property
    def state(self) -> GaussianState:
        """Snapshot of the current estimate as a GaussianState ``N(x, P)``."""
        return GaussianState(self._x.clone(), self._P.clone())

    @overload
    def to(self, dtype: torch.dtype) -> Estimator: ...

    @overload
    def to(self, device: torch.device) -> Estimator: ...

    def to(self, fmt):
        """Convert an estimator to a specific device or dtype.

        The model functions are shared with the new estimator, their outputs are converted on the fly.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the estimator to.

        Returns:
            Estimator: A new estimator with the right format
        """
        dtype = fmt if isinstance(fmt, torch.dtype) else self.dtype
        device = self.device if isinstance(fmt, torch.dtype) else torch.device(fmt)

        return Estimator(
            self._transition,
            self._control,
            self._Q.to(dtype).to(device),
            self._x.to(dtype).to(device),
            self._P.to(dtype).to(device),
            self._last_timestamp,
            dtype=dtype,
            device=device,
            joseph_update=self.joseph_update,
            use_cholesky=self.use_cholesky,
        )

    def predict(self, timestamp: float, control: Optional[torch.Tensor] = None) -> None:
        """Predict the system state at ``timestamp`` (time update).

        With ``dt = timestamp - last_timestamp``, it applies the process model:

            x = A(dt) x + B(dt) u
            P = A(dt) P A(dt)ᵀ + Q

        and sets the last timestamp to ``timestamp``. ``dt`` may be negative or null: out-of-order
        timestamps are not rejected. Model functions must therefore be well-defined at ``dt = 0``.

        Args:
            timestamp (float): Current timestamp.
            control (torch.Tensor | None): Control input ``u``. If None, ``u = 0``.
                Shape: ``(M, 1)`` or ``(M,)``

        Raises:
            InvalidArgument: If ``u``, ``A(dt)`` or ``B(dt)`` have the wrong shape.
        """
        timestamp = float(timestamp)
        dt = timestamp - self._last_timestamp
        dim_x = self.state_dim

        transition = self._matrix(self._transition(dt), (dim_x, dim_x), "transition")
        mean = transition @ self._x

        if control is not None:
            control = self._column(control, self.control_dim, "control input")
            if self._control is not None:
                control_matrix = self._matrix(self._control(dt), (dim_x, self.control_dim), "control")
                mean = mean + control_matrix @ control

        covariance = transition @ self._P @ transition.mT + self._Q

        self._x = mean
        self._P = covariance
        self._last_timestamp = timestamp

    def update(
        self,
        measure: torch.Tensor | float,
        measurement_matrix: torch.Tensor,
        measurement_noise: torch.Tensor | float,
    ) -> None:
        """Update the state estimate with an observation ``z`` (measurement update).

        The observation follows ``z = H x + v`` with ``v ~ N(0, R)``. :meth:`predict` should be called
        beforehand to bring the estimate to the time of the observation: the timestamp is not modified.
        Several updates can be applied at the same timestamp (e.g. independent sensors).

        It follows:
        1. Innovation: y = z - H x
        2. Innovation covariance: S = H P Hᵀ + R
        3. Kalman gain: K = P Hᵀ S^{-1}
        4. x = x + K y
        5. P = (I - K H) P   OR [JOSEPH_UPDATE] P = (I - K H) P (I - K H)ᵀ + K R Kᵀ

        Scalar observations are supported: ``z`` and ``R`` can be floats and ``H`` a 1-d tensor.

        Args:
            measure (torch.Tensor | float): Observation ``z``.
                Shape: ``(U, 1)`` or ``(U,)``
            measurement_matrix (torch.Tensor): Observation model ``H`` mapping the state to the observed space.
                Shape: ``(U, N)`` (or ``(N,)`` for a scalar observation)
            measurement_noise (torch.Tensor | float): Observation noise covariance ``R``.
                Shape: ``(U, U)``

        Raises:
            InvalidArgument: If ``z``, ``H`` or ``R`` have inconsistent shapes.
            NumericalError: If the innovation covariance ``S`` is singular. The estimate is left unchanged.
        """
        measurement_matrix = self._tensor(measurement_matrix)
        if measurement_matrix.ndim < 2:  # Scalar observation
            measurement_matrix = measurement_matrix.reshape(1, -1)
        if measurement_matrix.ndim != 2 or measurement_matrix.shape[1] != self.state_dim:
            raise InvalidArgument(
                f"measurement_matrix should have shape (U, {self.state_dim}), got {tuple(measurement_matrix.shape)}"
            )

        dim_z = measurement_matrix.shape[0]
        measure = self._column(measure, dim_z, "measure")
        measurement_noise = self._matrix(measurement_noise, (dim_z, dim_z), "measurement_noise")

        residual = measure - measurement_matrix @ self._x
        innovation_covariance = measurement_matrix @ self._P @ measurement_matrix.mT + measurement_noise
        kalman_gain = self._kalman_gain(measurement_matrix, innovation_covariance)

        mean = self._x + kalman_gain @ residual

        factor = torch.eye(self.state_dim, dtype=self.dtype, device=self.device) - kalman_gain @ measurement_matrix
        if self.joseph_update:
            covariance = factor @ self._P @ factor.mT + kalman_gain @ measurement_noise @ kalman_gain.mT
        else:
            covariance = factor @ self._P

        self._x = mean
        self._P = covariance

    def _kalman_gain(self, measurement_matrix: torch.Tensor, innovation_covariance: torch.Tensor) -> torch.Tensor:
        # Rounding can leave a singular S slightly off zero: reject it when numerically rank deficient
        # (NaN condition number for S = 0)
        condition = torch.linalg.cond(innovation_covariance).item()
        if not condition <= 1 / torch.finfo(self.dtype).eps:
            raise NumericalError(f"The innovation covariance is singular (condition number: {condition})")

        if self.use_cholesky:
            # Find K without inversing S but by solving the linear system SK^T = (PH^T)^T
            chol_decomposition, info = torch.linalg.cholesky_ex(innovation_covariance)
            if info.item():
                raise NumericalError("The innovation covariance is not positive definite")
            return torch.cholesky_solve(measurement_matrix @ self._P.mT, chol_decomposition).mT

        precision, info = torch.linalg.inv_ex(innovation_covariance)
        if info.item() or not torch.isfinite(precision).all():
            raise NumericalError("The innovation covariance is singular")
        return self._P @ measurement_matrix.mT @ precision

    def _tensor(self, value: Any) -> torch.Tensor:
        return torch.as_tensor(value, dtype=self.dtype, device=self.device)

    def _matrix(self, value: Any, shape: tuple[int, int], name: str) -> torch.Tensor:
        matrix = _as_matrix(self._tensor(value))
        if tuple(matrix.shape) != shape:
            raise InvalidArgument(f"{name} should have shape {shape}, got {tuple(matrix.shape)}")
        return matrix

    def _column(self, value: Any, size: int, name: str) -> torch.Tensor:
        column = self._tensor(value)
        if column.ndim < 2:
            column = column.reshape(-1, 1)
        if tuple(column.shape) != (size, 1):
            raise InvalidArgument(f"{name} should have shape ({size}, 1), got {tuple(column.shape)}")
        return column

    def __repr__(self) -> str:
        """Convert the estimator into a readable string."""
        header = (
            f"Estimator (State dimension: {self.state_dim}, Control dimension: {self.control_dim}, "
            f"Timestamp: {self._last_timestamp})"
        )
        state = self._pair_repr("State: x = ", self._x, "P", self._P, linewidth=80)
        transition = self._matrix(self._transition(0.0), (self.state_dim, self.state_dim), "transition")
        process = self._pair_repr("Process: A(0) = ", transition, "Q", self._Q, linewidth=80)

        n_char = max(len(line) for line in (state + "\n" + process).split("\n"))
        return ("\n" + "-" * n_char + "\n").join([header, state, process])

    def _pair_repr(self, prefix: str, left: torch.Tensor, name: str, right: torch.Tensor, linewidth: int) -> str:
        with printoptions(profile="short", sci_mode=False, linewidth=linewidth):
            left_repr = str(left).split("\n")
            right_repr = str(right).split("\n")

        max_char_left = max(len(line) for line in left_repr)
        max_char_right = max(len(line) for line in right_repr)
        indent = " " * len(prefix)

        if max_char_left + max_char_right <= self._REPR_SPLIT_LENGTH and len(left_repr) == len(right_repr):
            left_repr = [line + " " * (max_char_left - len(line)) for line in left_repr]
            left_header = [prefix] + [indent] * (len(left_repr) - 1)
            sep = [f"  &  {name} = "] + [" " * (len(name) + 8)] * (len(left_repr) - 1)
            return "\n".join(["".join(lines) for lines in zip(left_header, left_repr, sep, right_repr)])

        # Two lines
        left_header = [prefix] + [indent] * (len(left_repr) - 1)
        left_header += ["", f"{name} = ".rjust(len(prefix))] + [indent] * (len(right_repr) - 1)
        return "\n".join(["".join(lines) for lines in zip(left_header, [*left_repr, "", *right_repr])])
