import pytest
import torch

from torch_estimator import errlog


@pytest.fixture(autouse=True)
def deterministic():
    torch.manual_seed(0)
    torch.cuda.manual_seed_all(0)
    torch.use_deterministic_algorithms(True)


@pytest.fixture(autouse=True)
def restore_errlog():
    yield
    errlog.set_logging_level(errlog.Magnitude.DEBUG)
    errlog.reset()


def pytest_runtest_setup(item):
    if "cuda" in item.keywords and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
