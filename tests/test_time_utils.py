import time

from torch_estimator.time_utils import unix_time


def test_unix_time_is_in_seconds():
    before = time.time()
    now = unix_time()
    after = time.time()

    assert before <= now <= after
    assert isinstance(now, float)
