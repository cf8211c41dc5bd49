import numpy as np
import pytest

from flatnets.core.buffers import BufferSet
from flatnets.core.layers import ConnectedInput, Dense, Softmax
from flatnets.core.layout import ConfigurationError, connect
from flatnets.kernels import create_backend
from flatnets.training.losses import CE_EPSILON, REGISTRY


def _with_outputs(outputs, layer):
    network = connect([layer], ConnectedInput(inputs=2))
    outputs = np.asarray(outputs, dtype=np.float32)
    buffers = BufferSet(network, batch_size=outputs.shape[0] + 1)
    buffers.load_inputs(np.zeros((outputs.shape[0], 2), dtype=np.float32))
    start = network.output_layer.activation_output_offset
    buffers.activation_rows()[:, start:] = outputs
    return buffers


def test_mse_value_and_error_slice():
    buffers = _with_outputs([[0.5, 1.0], [0.0, 0.0]], Dense(neurons=2))
    buffers.errors.fill(9.0)
    total = REGISTRY.get("mse")(buffers, [[0.0, 1.0], [1.0, 1.0]])
    assert total == pytest.approx(0.125 + 1.0)
    layer = buffers.network.output_layer
    errors = buffers.error_rows()
    np.testing.assert_allclose(errors[:, layer.next_layer_error_offset :], [[0.5, 0.0], [-1.0, -1.0]])
    # every other cell was cleared
    assert not errors[:, : layer.next_layer_error_offset].any()
    assert not buffers.errors.reshape(3, -1)[2].any()


def test_cross_entropy_clamps_zero_probabilities():
    buffers = _with_outputs([[0.0, 1.0]], Softmax(neurons=2))
    total = REGISTRY.get("cross_entropy")(buffers, [[1.0, 0.0]])
    assert total == pytest.approx(-np.log(CE_EPSILON) / 2)
    assert np.isfinite(total)


def test_cross_entropy_error_is_softmax_logit_gradient():
    buffers = _with_outputs([[0.25, 0.75]], Softmax(neurons=2))
    REGISTRY.get("ce")(buffers, [[0.0, 1.0]])
    np.testing.assert_allclose(buffers.error_rows()[0, -2:], [0.25, -0.25])


def test_loss_after_forward_pass():
    network = connect([Softmax(neurons=3)], ConnectedInput(inputs=2))
    buffers = BufferSet(network, batch_size=2)
    buffers.load_inputs(np.ones((2, 2), dtype=np.float32))
    create_backend("vectorized").forward(network.layers[0], buffers)
    # zero parameters give a uniform distribution
    total = REGISTRY.get("cross_entropy")(buffers, [[1, 0, 0], [0, 0, 1]])
    assert total == pytest.approx(2 * np.log(3.0) / 3, rel=1e-5)


def test_shape_mismatch_raises():
    buffers = _with_outputs([[0.1, 0.2]], Dense(neurons=2))
    with pytest.raises(ValueError):
        REGISTRY.get("mse")(buffers, [[0.0, 0.0, 0.0]])


def test_registry_lookup():
    assert {"ce", "cross_entropy", "mse"} <= set(REGISTRY.names())
    assert REGISTRY.resolve("Cross-Entropy").name == "cross_entropy"
    with pytest.raises(ConfigurationError, match="Unknown loss"):
        REGISTRY.resolve("hinge")
