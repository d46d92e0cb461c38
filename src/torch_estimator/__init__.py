"""Torch-Estimator: linear Kalman state estimation with time-varying models in PyTorch.

torch-estimator maintains a running best estimate of the hidden state of a linear system, and the
uncertainty of this estimate, from a stream of timestamped control inputs and noisy, partial observations.

Key features
------------
- **Time-varying models**: the transition ``A`` and control ``B`` matrices are functions of the elapsed
  time ``dt`` between predictions (constant matrices are supported as well).
- **Any observation size**: each update brings its own observation model ``H`` and noise ``R``,
  scalar observations included. Several updates can be fused at the same timestamp.
- **Explicit failures**: shape mismatches raise :class:`~torch_estimator.errors.InvalidArgument`
  and singular innovation covariances raise :class:`~torch_estimator.errors.NumericalError`,
  leaving the estimate untouched.
- **Runs on CPU or GPU** in any floating dtype (``float64`` by default).

Getting started
---------------
The core API consists of:
- :class:`~torch_estimator.Estimator` with :meth:`~torch_estimator.Estimator.predict` and
  :meth:`~torch_estimator.Estimator.update`.
- :mod:`~torch_estimator.models` providing ready-to-use constant-derivative motion models
  (constant position / velocity / acceleration ...).
- :func:`~torch_estimator.track` to run the predict/update loop over a stream of observations.
- :mod:`~torch_estimator.errlog` for scoped, level-filtered logging.

Numerical notes
---------------
The covariance update uses the standard ``(I - K H) P`` form. If you encounter numerical instability,
consider enabling ``joseph_update=True``. The process noise ``Q`` is constant: it does not scale with ``dt``.

Notes on shapes
---------------
torch-estimator uses column vectors. State and measurement vectors have shape ``(dim, 1)``.
"""

from .errors import EstimatorError, InvalidArgument, NumericalError
from .estimator import Estimator, GaussianState, constant_model
from .tracking import Observation, track

__all__ = [
    "Estimator",
    "EstimatorError",
    "GaussianState",
    "InvalidArgument",
    "NumericalError",
    "Observation",
    "constant_model",
    "track",
]
__version__ = "0.1.0"
