import pytest
import torch

from torch_estimator.models import (
    ConstantDerivativeModel,
    constant_derivative_estimator,
    constant_model,
    create_control_matrix,
    create_process_matrix,
    create_process_noise,
    interleave,
    position_measurement,
)


def test_interleave_matches_expected():
    x = torch.tensor([[1, 1], [2, 2], [3, 3], [4, 4], [5, 5], [6, 6], [7, 7], [8, 8], [9, 9]])
    y = interleave(x, 3)
    expected = torch.tensor([[1, 1], [4, 4], [7, 7], [2, 2], [5, 5], [8, 8], [3, 3], [6, 6], [9, 9]])
    assert torch.equal(y, expected)


def test_constant_model_ignores_dt():
    matrix = torch.randn(3, 2)
    model = constant_model(matrix)

    assert model(0.0) is matrix
    assert model(-4.2) is matrix


def test_create_process_matrix_order1_dt1():
    process_matrix = create_process_matrix(order=1, dt=1.0, approximate=False)
    expected = torch.tensor([[1.0, 1.0], [0.0, 1.0]], dtype=torch.float64)
    assert torch.allclose(process_matrix, expected)


def test_create_process_matrix_order2_dt05():
    process_matrix = create_process_matrix(order=2, dt=0.5, approximate=False)
    expected = torch.tensor(
        [
            [1.0, 0.5, 0.125],
            [0.0, 1.0, 0.5],
            [0.0, 0.0, 1.0],
        ],
        dtype=torch.float64,
    )
    assert torch.allclose(process_matrix, expected)


def test_create_process_matrix_approximate_drops_higher_terms():
    process_matrix = create_process_matrix(order=2, dt=0.5, approximate=True)
    expected = torch.tensor(
        [
            [1.0, 0.5, 0.0],
            [0.0, 1.0, 0.5],
            [0.0, 0.0, 1.0],
        ],
        dtype=torch.float64,
    )
    assert torch.allclose(process_matrix, expected)


@pytest.mark.parametrize("order", [0, 1, 3])
def test_models_are_identity_and_null_at_dt0(order: int):
    assert torch.equal(create_process_matrix(order, dt=0.0), torch.eye(order + 1, dtype=torch.float64))
    assert torch.equal(create_control_matrix(order, dt=0.0), torch.zeros(order + 1, 1, dtype=torch.float64))


def test_create_control_matrix_order1():
    control_matrix = create_control_matrix(order=1, dt=0.5)
    expected = torch.tensor([[0.125], [0.5]], dtype=torch.float64)
    assert torch.allclose(control_matrix, expected)


def test_create_control_matrix_order2():
    control_matrix = create_control_matrix(order=2, dt=2.0)
    expected = torch.tensor([[8.0 / 6], [2.0], [2.0]], dtype=torch.float64)
    assert torch.allclose(control_matrix, expected)


def test_create_process_noise_shapes_and_symmetry():
    process_noise = create_process_noise(process_std=2.0, order=2, dt=1.0, expected_model=False, approximate=False)
    assert process_noise.shape == (3, 3)
    assert torch.allclose(process_noise, process_noise.mT)

    # Eigenvalues should be >= small negative tolerance
    eig = torch.linalg.eigvalsh(process_noise)
    assert torch.all(eig > -1e-6)


def test_create_process_noise_order_3():
    process_noise = create_process_noise(process_std=1.5, order=3, dt=1.0, expected_model=False, approximate=False)

    expected = torch.tensor(
        [
            [0.0625, 0.1875, 0.3750, 0.3750],
            [0.1875, 0.5625, 1.1250, 1.1250],
            [0.3750, 1.1250, 2.2500, 2.2500],
            [0.3750, 1.1250, 2.2500, 2.2500],
        ],
        dtype=torch.float64,
    )

    assert torch.allclose(process_noise, expected)


def test_create_process_noise_expected_model():
    process_noise = create_process_noise(process_std=1.0, order=5, dt=0.5, expected_model=False, approximate=False)
    process_noise_expected = create_process_noise(
        process_std=1.0, order=5, dt=0.5, expected_model=True, approximate=False
    )

    # One can show that the expected model has an offset of 1 in the resulting noises
    assert torch.allclose(process_noise[:-1, :-1], process_noise_expected[1:, 1:])


def test_model_layout_by_order():
    model = ConstantDerivativeModel(dim=2, order=1)

    assert model.state_dim == 4
    # x, y, dx, dy
    expected = torch.tensor(
        [
            [1.0, 0.0, 0.5, 0.0],
            [0.0, 1.0, 0.0, 0.5],
            [0.0, 0.0, 1.0, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ],
        dtype=torch.float64,
    )
    assert torch.allclose(model(0.5), expected)
    assert torch.allclose(
        model.control(0.5), torch.tensor([[0.125, 0.0], [0.0, 0.125], [0.5, 0.0], [0.0, 0.5]], dtype=torch.float64)
    )

    measurement_matrix, measurement_noise = model.measurement(torch.tensor([1.0, 2.0]))
    assert torch.equal(measurement_matrix, torch.eye(2, 4, dtype=torch.float64))
    assert torch.allclose(measurement_noise, torch.diag(torch.tensor([1.0, 4.0], dtype=torch.float64)))


def test_model_layout_by_dim():
    model = ConstantDerivativeModel(dim=3, order=2, order_by_dim=True)
    model_by_order = ConstantDerivativeModel(dim=3, order=2)

    assert torch.allclose(model(1.0), torch.block_diag(*[create_process_matrix(2, 1.0)] * 3))
    assert not torch.allclose(model(1.0), model_by_order(1.0))
    assert model.process_noise(1.5).shape == model_by_order.process_noise(1.5).shape

    measurement_matrix, _ = model.measurement(3.0)
    assert (
        measurement_matrix
        == torch.tensor(
            [
                # x,dx,ddx,y,dy,ddy,z,dz,ddz
                [1, 0, 0, 0, 0, 0, 0, 0, 0],
                [0, 0, 0, 1, 0, 0, 0, 0, 0],
                [0, 0, 0, 0, 0, 0, 1, 0, 0],
            ]
        )
    ).all()


def test_position_measurement_by_order():
    measurement_matrix, measurement_noise = position_measurement(2, 1, torch.tensor([0.5, 3.0]))

    # x, y, dx, dy
    assert torch.equal(
        measurement_matrix, torch.tensor([[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]], dtype=torch.float64)
    )
    assert torch.allclose(measurement_noise, torch.diag(torch.tensor([0.25, 9.0], dtype=torch.float64)))


def test_position_measurement_by_dim_matches_model():
    measurement_matrix, measurement_noise = position_measurement(2, 2, 2.0, order_by_dim=True)

    # x, dx, ddx, y, dy, ddy
    assert torch.equal(
        measurement_matrix,
        torch.tensor([[1.0, 0, 0, 0, 0, 0], [0, 0, 0, 1.0, 0, 0]], dtype=torch.float64),
    )
    assert torch.equal(measurement_noise, 4.0 * torch.eye(2, dtype=torch.float64))

    model_matrix, model_noise = ConstantDerivativeModel(dim=2, order=2, order_by_dim=True).measurement(2.0)
    assert torch.equal(measurement_matrix, model_matrix)
    assert torch.equal(measurement_noise, model_noise)


def test_constant_derivative_estimator_dimensions():
    estimator = constant_derivative_estimator(1.5, dim=2, order=2, with_control=True, timestamp=3.0)

    assert estimator.state_dim == 6
    assert estimator.control_dim == 2
    assert estimator.last_timestamp == 3.0
    assert torch.equal(estimator.error_covariance, torch.eye(6, dtype=torch.float64))

    no_control = constant_derivative_estimator(1.5, dim=2, order=2)
    assert no_control.control_dim == 6


def test_constant_derivative_estimator_follows_dt():
    # Constant velocity in 1d: x(t) = x0 + v t
    estimator = constant_derivative_estimator(0.0, dim=1, order=1, initial_state=torch.tensor([1.0, 2.0]))

    estimator.predict(0.5)
    assert torch.allclose(estimator.state_estimate, torch.tensor([[2.0], [2.0]], dtype=torch.float64))

    estimator.predict(3.0)
    assert torch.allclose(estimator.state_estimate, torch.tensor([[7.0], [2.0]], dtype=torch.float64))


def test_constant_derivative_estimator_with_control():
    # Constant acceleration input in 1d: x(t) = a t^2 / 2, v(t) = a t
    estimator = constant_derivative_estimator(0.0, dim=1, order=1, with_control=True, initial_std=0.0)

    for t in range(1, 5):
        estimator.predict(t * 0.5, torch.tensor([2.0]))

    assert torch.allclose(estimator.state_estimate, torch.tensor([[4.0], [4.0]], dtype=torch.float64))
