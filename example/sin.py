"""Example tracking irregularly sampled sinusoidal data"""

import argparse
from typing import Tuple

import matplotlib.pyplot as plt
import torch

import torch_estimator
from torch_estimator import errlog
from torch_estimator.models import ConstantDerivativeModel, constant_derivative_estimator


def generate_data(n: int, w0: float, noise: float, amplitude: float) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Generate sinusoidal data sampled at random times:

    x(t) = A sin(w0t)
    z(t) = x(t) + noise * N(0, 1)

    Args:
        n (int): Size of the sequence to generate
        w0 (float): Angular frequency
        noise (float): Gaussian noise standard deviation
        amplitude (float): Amplitude A of the sinus

    Returns:
        torch.Tensor: t, sampling times (mean time step of 1.0)
            Shape: (T,)
        torch.Tensor: x(t) state of the system
            Shape: (T, 1, 1)
        torch.Tensor: z(t) measure for each state
            Shape: (T, 1, 1)
    """
    t = torch.rand(n, dtype=torch.float64).mul(2.0).cumsum(0)
    x = amplitude * torch.sin(w0 * t[..., None, None])
    return t, x, x + noise * torch.randn_like(x)


def main(order: int, n: int, measurement_std: float, amplitude: float, nans: bool):
    # Let's do 2 full periods of sinus
    w0 = 4 * torch.pi / n

    # The process errors with a constant pos/vel/acc model can be majored using taylor expansion
    # | sin(w0 (t+1)) - pred_order_k(sin(w0t)) | < w0^(k+1) / (k+1)!
    # In practice, w0^k / k! works pretty well (and a sqrt(w0) for order 0)
    process_std = amplitude * w0 ** (order + 0.5 * (order == 0)) / torch.prod(torch.arange(1, order + 1)) / 5
    process_std = max(process_std.item(), 1e-7)  # Prevent floating errors

    print("Parameters")
    print(f"Estimator order: {order}")
    print(f"Measurement noise: {measurement_std}")
    print(f"Process noise: {process_std}")
    print("Data: z(t) = measurement_noise * N(0, 1) + sin(w0 t), sampled at random times")
    print(f"Using w0={w0} for {n} points")

    errlog.set_logging_level(errlog.Magnitude.INFO)

    # Let's create an unkown initial state
    # Set estimation at 0, with a std of 3 * amplitude * w0^k
    estimator = constant_derivative_estimator(
        process_std,
        dim=1,
        order=order,
        initial_std=torch.tensor([amplitude * w0**k * 3 for k in range(order + 1)]),
    )
    measurement_matrix, measurement_noise = ConstantDerivativeModel(dim=1, order=order).measurement(measurement_std)

    t, x, z = generate_data(n, w0, measurement_std, amplitude)
    if nans:
        z[n // 2 : n // 2 + n // 20] = torch.nan  # Create nan measures in the middle

    observations = [
        torch_estimator.Observation(t_k.item(), z_k, measurement_matrix, measurement_noise) for t_k, z_k in zip(t, z)
    ]
    states = torch_estimator.track(estimator, observations, return_all=True)

    print(f"Filtering MSE: {(states.mean[:, :1] - x).pow(2).mean()}")

    plt.rcParams["font.size"] = 20

    plt.figure(figsize=(24, 16))
    plt.plot(t, x[..., 0, 0], color="k", label="True trajectory - x = A sin(w0 t)")
    plt.plot(t, states.mean[:, 0, 0], color="y", label="Filtered trajectory")
    plt.plot(t, z[..., 0, 0], "o", color="r", markersize=2.0, label="Observerd trajectory - z = x + noise * N(0, 1)")

    mini = states.mean[:, 0, 0] - 3 * states.covariance[:, 0, 0].sqrt()
    maxi = states.mean[:, 0, 0] + 3 * states.covariance[:, 0, 0].sqrt()
    plt.fill_between(t, mini, maxi, color="y", alpha=0.5)

    plt.ylim(-amplitude * 1.4, amplitude * 1.4)

    plt.xlabel("t")
    plt.ylabel("x")

    plt.legend(loc="upper right")

    if order > 0:
        plt.figure(figsize=(24, 16))
        plt.plot(t, amplitude * w0 * torch.cos(w0 * t), color="k", label="True velocity - v = A w0 cos(w0 t)")
        plt.plot(t, states.mean[:, 1, 0], color="y", label="Estimated velocity (Filtering)")

        mini = states.mean[:, 1, 0] - 3 * states.covariance[:, 1, 1].sqrt()
        maxi = states.mean[:, 1, 0] + 3 * states.covariance[:, 1, 1].sqrt()
        plt.fill_between(t, mini, maxi, color="y", alpha=0.5)

        plt.ylim(-amplitude * w0 * 1.4, amplitude * w0 * 1.4)

        plt.xlabel("t")
        plt.ylabel("v")

        plt.legend(loc="upper right")

    plt.show()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Estimator example, tracking a noisy sinus sampled at random times")
    parser.add_argument(
        "--order",
        default=2,
        type=int,
        help="Order of the motion model (estimate derivative up to order to predict next pos)",
    )
    parser.add_argument("--noise", default=2.0, type=float, help="Observation noise")
    parser.add_argument("--amplitude", default=20, type=int, help="Amplitude of the signal")
    parser.add_argument("--n", default=500, type=int, help="Number of points")
    parser.add_argument("--nans", action="store_true", help="Some state will not be measured")

    args = parser.parse_args()

    main(args.order, args.n, args.noise, args.amplitude, args.nans)
