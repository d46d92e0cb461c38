import pytest
import torch

from torch_estimator import GaussianState


def _spd_matrix(dim: int, batch: tuple[int, ...] = ()) -> torch.Tensor:
    # Construct a symmetric positive definite covariance.
    cov = torch.randn(*batch, dim, dim)
    return cov @ cov.mT + 1e-2 * torch.eye(dim)


def test_clone_is_deep_copy():
    s = GaussianState(torch.randn(4, 1), _spd_matrix(4))
    c = s.clone()

    assert c is not s
    assert torch.allclose(c.mean, s.mean)
    assert torch.allclose(c.covariance, s.covariance)

    # Mutate original, clone must not change
    s.mean.add_(1.0)
    s.covariance.mul_(2.0)
    assert not torch.allclose(c.mean, s.mean)
    assert not torch.allclose(c.covariance, s.covariance)


def test_getitem_over_time():
    s = GaussianState(torch.randn(5, 2, 1), _spd_matrix(2, batch=(5,)))

    sub = s[3]
    assert sub.mean.shape == (2, 1)
    assert sub.covariance.shape == (2, 2)
    assert torch.equal(sub.mean, s.mean[3])

    sub = s[1:4]
    assert sub.mean.shape == (3, 2, 1)
    assert sub.covariance.shape == (3, 2, 2)


def test_to_convert_dtype():
    s = GaussianState(torch.randn(3, 1), _spd_matrix(3))

    s64 = s.to(torch.float64)

    assert s64.mean.dtype == torch.float64
    assert s64.covariance.dtype == torch.float64
    assert s.mean.dtype == torch.float32


@pytest.mark.cuda
def test_to_device():
    s = GaussianState(torch.randn(3, 1), _spd_matrix(3))

    cuda = s.to(torch.device("cuda"))

    assert cuda.mean.is_cuda
    assert cuda.covariance.is_cuda
